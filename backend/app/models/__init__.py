"""
SQLAlchemy models for the Tenant Schema Provisioning platform.

This package contains the master database models:
- BaseModel: Abstract base class with common fields
- Tenant: Tenant registry (one row per tenant schema)

Tables inside tenant schemas are not models: they are created by the
changelog (see app.tenant_db) and tracked in each schema's ledger.
"""

from app.models.base import BaseModel, register_base_model_events
from app.models.tenant import Tenant

__all__ = [
    'BaseModel',
    'register_base_model_events',
    'Tenant',
]
