"""
Marshmallow schemas for data validation and serialization.

This package contains the validation schemas of the tenant provisioning API:
- tenant_schema: Provisioning, update/rollback requests, tenant and changeset responses
"""

from app.schemas.tenant_schema import (
    TenantProvisionSchema,
    TenantSchemaOperationSchema,
    TenantResponseSchema,
    ChangesetSchema,
    tenant_provision_schema,
    tenant_schema_operation_schema,
    tenant_response_schema,
    tenants_response_schema,
    changesets_schema,
)

__all__ = [
    'TenantProvisionSchema',
    'TenantSchemaOperationSchema',
    'TenantResponseSchema',
    'ChangesetSchema',
    'tenant_provision_schema',
    'tenant_schema_operation_schema',
    'tenant_response_schema',
    'tenants_response_schema',
    'changesets_schema',
]
