"""
Tenants Blueprint - Tenant Schema Provisioning Routes

This module provides REST API endpoints for tenant schema operations:
- POST /api/tenants/provision - Register a tenant and provision its schema
- POST /api/tenants/update - Apply pending changesets to a tenant schema
- POST /api/tenants/rollback - Revert the last changeset of a tenant schema
- GET /api/tenants - List registered tenants
- GET /api/tenants/<tenant_id> - Tenant details with changeset history
- GET /api/tenants/health - Liveness check

Parameters are read from the query string, form data or a JSON body.
These are administrative endpoints: no authentication is performed here,
deploy them behind the platform's internal network.
"""

import logging
from flask import Blueprint, request
from marshmallow import ValidationError
from sqlalchemy import text

from app.extensions import db, redis_manager
from app.schemas.tenant_schema import (
    tenant_provision_schema,
    tenant_schema_operation_schema,
    tenant_response_schema,
    tenants_response_schema,
    changesets_schema,
)
from app.services.tenant_service import TenantService
from app.tenant_db import ProvisioningError
from app.utils.database import tenant_db_manager
from app.utils.responses import ok, created, bad_request, not_found, service_unavailable

logger = logging.getLogger(__name__)

# Create blueprint
tenants_bp = Blueprint('tenants', __name__, url_prefix='/api/tenants')


def get_request_params() -> dict:
    """
    Merge request parameters: query string, then form data, then JSON body.

    Later sources override earlier ones.
    """
    params = dict(request.args.items())
    params.update(request.form.items())

    body = request.get_json(silent=True)
    if isinstance(body, dict):
        params.update(body)

    return params


def provisioning_error_response(error: ProvisioningError):
    """400 response describing a failed provisioning operation."""
    return bad_request(
        str(error),
        details={
            'tenantId': error.tenant_id,
            'operation': error.operation,
            'cause': type(error.cause).__name__,
        }
    )


@tenants_bp.route('/provision', methods=['POST'])
def provision_tenant():
    """
    Provision a tenant schema

    Creates the tenant schema if needed and applies every pending changeset.
    Idempotent: provisioning an already provisioned tenant applies nothing.

    **Parameters** (query string, form or JSON):
        tenantId: Tenant identifier (required, 1-50 chars)
        tenantName: Display name (required, 1-100 chars)
        description: Optional description (max 500 chars)

    **Response**:
        201 Created:
            {
                "success": true,
                "message": "Tenant provisioned successfully",
                "data": {
                    "tenantId": "acme",
                    "tenantName": "Acme Corp",
                    "schemaName": "tenant_acme",
                    "active": true,
                    "status": "READY",
                    "appliedChangesets": ["create-users-table"],
                    ...
                }
            }

        400 Bad Request: Validation error or provisioning failure

    **Example**:
        POST /api/tenants/provision?tenantId=acme&tenantName=Acme%20Corp
    """
    try:
        validated_data = tenant_provision_schema.load(get_request_params())
    except ValidationError as err:
        logger.warning(f"Validation error: {err.messages}")
        return bad_request('Validation failed', details=err.messages)

    try:
        tenant, applied = TenantService.provision_tenant(
            validated_data['tenant_id'],
            validated_data['tenant_name'],
            validated_data.get('description')
        )
    except ProvisioningError as e:
        return provisioning_error_response(e)

    data = tenant_response_schema.dump(tenant)
    data['appliedChangesets'] = applied
    return created(data, 'Tenant provisioned successfully')


@tenants_bp.route('/update', methods=['POST'])
def update_tenant_schema():
    """
    Apply pending changesets to a tenant schema

    **Parameters** (query string, form or JSON):
        tenantId: Tenant identifier (required)
        schemaName: Target schema (optional, defaults to the tenant's schema)

    **Response**:
        200 OK:
            {
                "success": true,
                "message": "Schema tenant_acme updated",
                "data": {"tenantId": "acme", "schemaName": "tenant_acme", "appliedChangesets": []}
            }

        400 Bad Request: Validation error, missing schema or failed changeset
    """
    try:
        validated_data = tenant_schema_operation_schema.load(get_request_params())
    except ValidationError as err:
        logger.warning(f"Validation error: {err.messages}")
        return bad_request('Validation failed', details=err.messages)

    tenant_id = validated_data['tenant_id']
    try:
        schema_name, applied = TenantService.update_tenant_schema(
            tenant_id, validated_data.get('schema_name')
        )
    except ProvisioningError as e:
        return provisioning_error_response(e)

    return ok(
        {'tenantId': tenant_id, 'schemaName': schema_name, 'appliedChangesets': applied},
        f'Schema {schema_name} updated'
    )


@tenants_bp.route('/rollback', methods=['POST'])
def rollback_tenant_schema():
    """
    Revert the last changeset applied to a tenant schema

    **Parameters** (query string, form or JSON):
        tenantId: Tenant identifier (required)
        schemaName: Target schema (optional, defaults to the tenant's schema)

    **Response**:
        200 OK:
            {
                "success": true,
                "message": "Changeset create-users-table rolled back",
                "data": {"tenantId": "acme", "schemaName": "tenant_acme", "rolledBack": "create-users-table"}
            }

        400 Bad Request: Nothing to roll back, no rollback defined, or rollback failure
    """
    try:
        validated_data = tenant_schema_operation_schema.load(get_request_params())
    except ValidationError as err:
        logger.warning(f"Validation error: {err.messages}")
        return bad_request('Validation failed', details=err.messages)

    tenant_id = validated_data['tenant_id']
    try:
        schema_name, step_id = TenantService.rollback_tenant_schema(
            tenant_id, validated_data.get('schema_name')
        )
    except ProvisioningError as e:
        return provisioning_error_response(e)

    return ok(
        {'tenantId': tenant_id, 'schemaName': schema_name, 'rolledBack': step_id},
        f'Changeset {step_id} rolled back'
    )


@tenants_bp.route('', methods=['GET'])
def list_tenants():
    """
    List registered tenants

    **Query parameters**:
        includeInactive: "true" to include deactivated tenants
    """
    include_inactive = request.args.get('includeInactive', 'false').lower() == 'true'
    tenants = TenantService.list_tenants(include_inactive=include_inactive)

    logger.info(f"Retrieved {len(tenants)} tenants")
    return ok(tenants_response_schema.dump(tenants), 'Tenants retrieved successfully')


@tenants_bp.route('/health', methods=['GET'])
def health():
    """
    Liveness check of the provisioning service

    **Response**:
        200 OK: registry database reachable
        503 Service Unavailable: registry database unreachable
    """
    try:
        db.session.execute(text('SELECT 1'))
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return service_unavailable('Registry database unreachable', details=str(e))

    dialect = tenant_db_manager.dialect.name if tenant_db_manager.provisioner else None
    return ok({
        'status': 'healthy',
        'dialect': dialect,
        'redisLocks': redis_manager.is_enabled(),
    }, 'Service is healthy')


@tenants_bp.route('/<tenant_id>', methods=['GET'])
def get_tenant(tenant_id):
    """
    Get tenant details with changeset history

    **Response**:
        200 OK:
            {
                "success": true,
                "data": {
                    "tenant": {...},
                    "history": [{"id": "create-users-table", "orderExecuted": 1, ...}],
                    "pending": []
                }
            }

        404 Not Found: Tenant not registered
        400 Bad Request: Schema could not be inspected
    """
    try:
        details = TenantService.get_tenant_details(tenant_id)
    except ProvisioningError as e:
        return provisioning_error_response(e)

    if details is None:
        return not_found('Tenant')

    return ok({
        'tenant': tenant_response_schema.dump(details['tenant']),
        'history': changesets_schema.dump(details['history']),
        'pending': changesets_schema.dump(details['pending']),
    }, 'Tenant retrieved successfully')
