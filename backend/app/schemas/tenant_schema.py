"""
Tenant Schemas for Data Validation and Serialization

This module defines Marshmallow schemas for the tenant provisioning endpoints.
Request fields use the camelCase names of the HTTP interface (tenantId,
tenantName, schemaName); they load into snake_case keys.

Schemas:
- TenantProvisionSchema: For POST /api/tenants/provision
- TenantSchemaOperationSchema: For POST /api/tenants/update and /rollback
- TenantResponseSchema: For API responses (registry row)
- ChangesetSchema: For ledger rows and pending changesets
"""

from marshmallow import Schema, fields, validate, validates, ValidationError, EXCLUDE

from app.tenant_db.dialects import MAX_SCHEMA_NAME_LENGTH, SCHEMA_NAME_PATTERN


class TenantProvisionSchema(Schema):
    """
    Schema for tenant provisioning requests.

    Fields:
    - tenantId: Tenant identifier (required, 1-50 characters)
    - tenantName: Display name (required, 1-100 characters)
    - description: Optional description (max 500 characters)
    """

    class Meta:
        unknown = EXCLUDE

    tenant_id = fields.Str(
        required=True,
        data_key='tenantId',
        validate=validate.Length(min=1, max=50, error="Tenant id must be between 1 and 50 characters")
    )
    tenant_name = fields.Str(
        required=True,
        data_key='tenantName',
        validate=validate.Length(min=1, max=100, error="Tenant name must be between 1 and 100 characters")
    )
    description = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=500, error="Description must not exceed 500 characters")
    )

    @validates('tenant_id')
    def validate_tenant_id(self, value, **kwargs):
        """Validate tenant id is not empty or whitespace only."""
        if not value.strip():
            raise ValidationError("Tenant id cannot be empty or whitespace")

    @validates('tenant_name')
    def validate_tenant_name(self, value, **kwargs):
        """Validate tenant name is not empty or whitespace only."""
        if not value.strip():
            raise ValidationError("Tenant name cannot be empty or whitespace")


class TenantSchemaOperationSchema(Schema):
    """
    Schema for update and rollback requests.

    Fields:
    - tenantId: Tenant identifier (required)
    - schemaName: Target schema (optional, derived from tenantId when missing)
    """

    class Meta:
        unknown = EXCLUDE

    tenant_id = fields.Str(
        required=True,
        data_key='tenantId',
        validate=validate.Length(min=1, max=50, error="Tenant id must be between 1 and 50 characters")
    )
    schema_name = fields.Str(
        load_default=None,
        allow_none=True,
        data_key='schemaName',
        validate=validate.Length(max=MAX_SCHEMA_NAME_LENGTH)
    )

    @validates('tenant_id')
    def validate_tenant_id(self, value, **kwargs):
        if not value.strip():
            raise ValidationError("Tenant id cannot be empty or whitespace")

    @validates('schema_name')
    def validate_schema_name(self, value, **kwargs):
        """Only lowercase letters, digits and underscores reach the database."""
        if value is not None and not SCHEMA_NAME_PATTERN.match(value):
            raise ValidationError(
                "Schema name must contain only lowercase letters, numbers, and underscores"
            )


class TenantResponseSchema(Schema):
    """Schema for tenant registry rows in API responses."""

    id = fields.UUID(dump_only=True)
    tenant_id = fields.Str(data_key='tenantId')
    name = fields.Str(data_key='tenantName')
    schema_name = fields.Str(data_key='schemaName')
    is_active = fields.Boolean(data_key='active')
    description = fields.Str(allow_none=True)
    status = fields.Str()
    last_error = fields.Str(allow_none=True, data_key='lastError')
    last_operation_at = fields.DateTime(allow_none=True, data_key='lastOperationAt')
    created_at = fields.DateTime(data_key='createdAt')
    updated_at = fields.DateTime(data_key='updatedAt')


class ChangesetSchema(Schema):
    """Schema for applied (ledger) and pending changesets."""

    id = fields.Str()
    author = fields.Str()
    source = fields.Str(allow_none=True)
    description = fields.Str(allow_none=True)
    checksum = fields.Str(allow_none=True)
    order_executed = fields.Int(allow_none=True, data_key='orderExecuted')
    applied_at = fields.DateTime(allow_none=True, data_key='appliedAt')


# Pre-instantiated schemas
tenant_provision_schema = TenantProvisionSchema()
tenant_schema_operation_schema = TenantSchemaOperationSchema()
tenant_response_schema = TenantResponseSchema()
tenants_response_schema = TenantResponseSchema(many=True)
changesets_schema = ChangesetSchema(many=True)
