"""
Tenant Schema Package

This package contains the schema-per-tenant provisioning system: every
tenant gets its own database schema, migrated along a shared changelog.

Modules:
- provisioner: SchemaProvisioner, ProvisionerConfig, derive_schema_name
- changelog: Changelog, MigrationStep, load_changelog (SQL files or Python)
- ledger: per-schema applied-step log and migration lock
- dialects: PostgreSQL and SQLite schema strategies
- exceptions: error taxonomy and ProvisioningError

The default changelog lives in changesets/ (formatted SQL files).
"""

from pathlib import Path

from app.tenant_db.changelog import Changelog, MigrationStep, load_changelog
from app.tenant_db.exceptions import ProvisioningError
from app.tenant_db.provisioner import (
    ProvisionerConfig,
    SchemaProvisioner,
    TenantRecord,
    derive_schema_name
)

DEFAULT_CHANGELOG_DIR = str(Path(__file__).resolve().parent / 'changesets')

__all__ = [
    'Changelog',
    'MigrationStep',
    'load_changelog',
    'ProvisioningError',
    'ProvisionerConfig',
    'SchemaProvisioner',
    'TenantRecord',
    'derive_schema_name',
    'DEFAULT_CHANGELOG_DIR',
]
