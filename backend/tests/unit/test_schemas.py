"""
Unit Tests for Marshmallow Schemas

Tests for request validation and response serialization:
- TenantProvisionSchema: required fields, lengths, whitespace
- TenantSchemaOperationSchema: schema name pattern
- TenantResponseSchema / ChangesetSchema: camelCase output
"""

from datetime import datetime, timezone

import pytest
from marshmallow import ValidationError

from app.models import Tenant
from app.schemas.tenant_schema import (
    changesets_schema,
    tenant_provision_schema,
    tenant_response_schema,
    tenant_schema_operation_schema,
)


class TestTenantProvisionSchema:
    """Tests for TenantProvisionSchema"""

    def test_valid_data(self):
        """Test camelCase input loads into snake_case keys"""
        data = {'tenantId': 'acme', 'tenantName': 'Acme Corp', 'description': 'Test tenant'}

        result = tenant_provision_schema.load(data)

        assert result == {'tenant_id': 'acme', 'tenant_name': 'Acme Corp', 'description': 'Test tenant'}

    def test_description_optional(self):
        """Test description defaults to None"""
        result = tenant_provision_schema.load({'tenantId': 'acme', 'tenantName': 'Acme Corp'})

        assert result['description'] is None

    def test_unknown_fields_ignored(self):
        """Test unknown parameters are excluded"""
        result = tenant_provision_schema.load({
            'tenantId': 'acme', 'tenantName': 'Acme Corp', 'plan': 'gold'
        })

        assert 'plan' not in result

    def test_missing_required_fields(self):
        """Test tenantId and tenantName are required"""
        with pytest.raises(ValidationError) as exc_info:
            tenant_provision_schema.load({})

        assert 'tenantId' in exc_info.value.messages
        assert 'tenantName' in exc_info.value.messages

    @pytest.mark.parametrize('data, field', [
        ({'tenantId': '', 'tenantName': 'Acme'}, 'tenantId'),
        ({'tenantId': '   ', 'tenantName': 'Acme'}, 'tenantId'),
        ({'tenantId': 'x' * 51, 'tenantName': 'Acme'}, 'tenantId'),
        ({'tenantId': 'acme', 'tenantName': '  '}, 'tenantName'),
        ({'tenantId': 'acme', 'tenantName': 'x' * 101}, 'tenantName'),
        ({'tenantId': 'acme', 'tenantName': 'Acme', 'description': 'x' * 501}, 'description'),
    ])
    def test_invalid_values(self, data, field):
        """Test length and whitespace validation"""
        with pytest.raises(ValidationError) as exc_info:
            tenant_provision_schema.load(data)

        assert field in exc_info.value.messages


class TestTenantSchemaOperationSchema:
    """Tests for TenantSchemaOperationSchema"""

    def test_schema_name_optional(self):
        """Test schemaName defaults to None"""
        result = tenant_schema_operation_schema.load({'tenantId': 'acme'})

        assert result == {'tenant_id': 'acme', 'schema_name': None}

    def test_explicit_schema_name(self):
        """Test a valid schema name is kept"""
        result = tenant_schema_operation_schema.load({'tenantId': 'acme', 'schemaName': 'tenant_acme'})

        assert result['schema_name'] == 'tenant_acme'

    @pytest.mark.parametrize('schema_name', [
        'Tenant_Acme',
        'tenant-acme',
        'tenant_acme; DROP TABLE users',
        'x' * 64,
    ])
    def test_invalid_schema_name(self, schema_name):
        """Test schema names outside [a-z0-9_] are rejected"""
        with pytest.raises(ValidationError) as exc_info:
            tenant_schema_operation_schema.load({'tenantId': 'acme', 'schemaName': schema_name})

        assert 'schemaName' in exc_info.value.messages

    def test_missing_tenant_id(self):
        """Test tenantId is required"""
        with pytest.raises(ValidationError) as exc_info:
            tenant_schema_operation_schema.load({'schemaName': 'tenant_acme'})

        assert 'tenantId' in exc_info.value.messages


class TestResponseSchemas:
    """Tests for response serialization"""

    def test_tenant_response(self, session):
        """Test registry rows are dumped with camelCase keys"""
        tenant = Tenant(tenant_id='acme', name='Acme Corp')
        session.add(tenant)
        session.commit()

        data = tenant_response_schema.dump(tenant)

        assert data['id'] == str(tenant.id)
        assert data['tenantId'] == 'acme'
        assert data['tenantName'] == 'Acme Corp'
        assert data['schemaName'] == 'tenant_acme'
        assert data['active'] is True
        assert data['status'] == 'UNPROVISIONED'
        assert data['lastError'] is None
        assert 'createdAt' in data

    def test_changesets_dump(self):
        """Test ledger rows are dumped with camelCase keys"""
        rows = [{
            'id': 'create-users-table',
            'author': 'platform',
            'source': '001_create_users_table.sql',
            'description': 'Users of the tenant',
            'checksum': 'abc',
            'order_executed': 1,
            'applied_at': datetime(2024, 1, 1, tzinfo=timezone.utc),
        }]

        data = changesets_schema.dump(rows)

        assert data[0]['id'] == 'create-users-table'
        assert data[0]['orderExecuted'] == 1
        assert data[0]['appliedAt'].startswith('2024-01-01T00:00:00')
