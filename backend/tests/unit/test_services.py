"""
Unit Tests for Service Layer

Tests for TenantService:
- provision_tenant: registration, idempotence, state tracking, failures
- update_tenant_schema / rollback_tenant_schema: schema resolution and lifecycle
- release_schema_lock: recovery of interrupted operations
- get_tenant_details / list_tenants

The provisioner of the testing app runs on in-memory SQLite databases with
the shipped changelog; failures are injected by patching get_provisioner.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from app.models import Tenant
from app.services.tenant_service import TenantService
from app.tenant_db import ProvisioningError
from app.tenant_db.exceptions import (
    DatabaseConnectionError,
    InvalidStateTransitionError,
    MigrationStepError,
    RollbackError,
    SchemaCreationError,
    SchemaLockError,
    SchemaNotFoundError,
)
from app.tenant_db.ledger import LOCK_ROW_ID, lock_table
from app.utils.database import get_provisioner, tenant_db_manager


class TestProvisionTenant:
    """Tests for TenantService.provision_tenant"""

    def test_provision_tenant_success(self, db):
        """Test provisioning registers a READY tenant"""
        # Act
        tenant, applied = TenantService.provision_tenant('acme', 'Acme Corp', 'Test tenant')

        # Assert
        assert applied == ['create-users-table']
        assert tenant.schema_name == 'tenant_acme'
        assert tenant.status == Tenant.STATUS_READY
        assert tenant.description == 'Test tenant'
        assert tenant.last_error is None
        assert tenant.last_operation_at is not None
        assert Tenant.find_by_tenant_id('acme') is tenant

    def test_provision_tenant_idempotent(self, db):
        """Test a second provisioning applies nothing and keeps one registry row"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        tenant, applied = TenantService.provision_tenant('acme', 'Acme Corporation')

        assert applied == []
        assert tenant.name == 'Acme Corporation'
        assert tenant.status == Tenant.STATUS_READY
        assert Tenant.query.count() == 1

    @patch('app.services.tenant_service.get_provisioner')
    def test_provision_failure_marks_tenant_failed(self, mock_get_provisioner, db):
        """Test a provisioning failure is recorded on the tenant"""
        # Arrange
        cause = MigrationStepError("Changeset 'create-users-table' failed: boom", step_id='create-users-table')
        mock_provisioner = MagicMock()
        mock_provisioner.provision.side_effect = ProvisioningError('acme', cause, 'provision')
        mock_get_provisioner.return_value = mock_provisioner

        # Act
        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Acme Corp')

        # Assert
        assert exc_info.value.cause is cause
        tenant = Tenant.find_by_tenant_id('acme')
        assert tenant.status == Tenant.STATUS_FAILED
        assert 'boom' in tenant.last_error

    def test_provision_rejects_schema_clash(self, session):
        """Test two identifiers deriving the same schema are rejected"""
        session.add(Tenant(tenant_id='ACME', name='Upper Acme'))
        session.commit()

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Lower Acme')

        assert isinstance(exc_info.value.cause, SchemaCreationError)
        assert "'ACME'" in str(exc_info.value)
        assert Tenant.find_by_tenant_id('acme') is None

    def test_provision_rejects_tenant_in_progress(self, session):
        """Test a tenant stuck in an operation is not provisioned again"""
        session.add(Tenant(tenant_id='acme', name='Acme Corp', status=Tenant.STATUS_PROVISIONING))
        session.commit()

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Acme Corp')

        assert isinstance(exc_info.value.cause, InvalidStateTransitionError)
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_PROVISIONING

    @patch('app.services.tenant_service.schema_lock')
    def test_provision_schema_busy(self, mock_schema_lock, db):
        """Test a busy schema leaves nothing registered"""
        mock_schema_lock.side_effect = SchemaLockError('Schema tenant_acme is busy')

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Acme Corp')

        assert isinstance(exc_info.value.cause, SchemaLockError)
        assert Tenant.find_by_tenant_id('acme') is None

    @patch('app.services.tenant_service.Tenant.find_by_tenant_id')
    def test_provision_registry_unavailable(self, mock_find, db):
        """Test a registry failure is reported as a ProvisioningError naming the tenant"""
        mock_find.side_effect = OperationalError('SELECT tenants', {}, Exception('unable to open database file'))

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Acme Corp')

        assert exc_info.value.tenant_id == 'acme'
        assert exc_info.value.operation == 'provision'
        assert isinstance(exc_info.value.cause, DatabaseConnectionError)
        assert 'unable to open database file' in str(exc_info.value)

    @patch('app.services.tenant_service.Tenant.find_by_schema_name', return_value=None)
    @patch('app.services.tenant_service.Tenant.find_by_tenant_id', return_value=None)
    def test_provision_concurrent_registration(self, mock_find, mock_find_schema, session):
        """Test a tenant registered by a concurrent request fails cleanly"""
        session.add(Tenant(tenant_id='acme', name='Acme Corp'))
        session.commit()

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.provision_tenant('acme', 'Acme Corp')

        assert isinstance(exc_info.value.cause, SchemaCreationError)
        assert 'registered concurrently' in str(exc_info.value)
        assert Tenant.query.filter_by(tenant_id='acme').count() == 1

    @patch('app.services.tenant_service.Tenant.find_by_tenant_id', return_value=None)
    @patch('app.services.tenant_service.schema_lock')
    def test_registry_lookup_runs_under_schema_lock(self, mock_schema_lock, mock_find, db):
        """Test the new-tenant check happens while the schema lock is held"""
        events = []
        mock_schema_lock.return_value.__enter__.side_effect = lambda: events.append('locked')
        mock_find.side_effect = lambda tenant_id: events.append('lookup')

        TenantService.provision_tenant('acme', 'Acme Corp')

        mock_schema_lock.assert_called_once_with('tenant_acme')
        assert events == ['locked', 'lookup']


class TestUpdateTenantSchema:
    """Tests for TenantService.update_tenant_schema"""

    def test_update_up_to_date(self, db):
        """Test update of a current schema applies nothing"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        schema_name, applied = TenantService.update_tenant_schema('acme')

        assert schema_name == 'tenant_acme'
        assert applied == []
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_READY

    def test_update_unprovisioned_schema(self, db):
        """Test update never creates a schema"""
        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.update_tenant_schema('ghost')

        assert exc_info.value.operation == 'update'
        assert isinstance(exc_info.value.cause, SchemaNotFoundError)

    def test_update_unregistered_tenant(self, db):
        """Test update works on a schema provisioned outside the registry"""
        get_provisioner().provision('solo', 'Solo')

        schema_name, applied = TenantService.update_tenant_schema('solo')

        assert schema_name == 'tenant_solo'
        assert applied == []
        assert Tenant.find_by_tenant_id('solo') is None

    def test_update_rejects_foreign_schema(self, db):
        """Test a registered tenant cannot target another schema"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.update_tenant_schema('acme', 'tenant_globex')

        assert isinstance(exc_info.value.cause, ValueError)
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_READY

    @patch('app.services.tenant_service.get_provisioner')
    def test_update_failure_marks_tenant_failed(self, mock_get_provisioner, session):
        """Test an update failure moves the tenant to FAILED"""
        session.add(Tenant(tenant_id='acme', name='Acme Corp', status=Tenant.STATUS_READY))
        session.commit()

        cause = MigrationStepError('Ledger diverges', step_id='create-users-table')
        mock_get_provisioner.return_value.update.side_effect = ProvisioningError('acme', cause, 'update')

        with pytest.raises(ProvisioningError):
            TenantService.update_tenant_schema('acme')

        tenant = Tenant.find_by_tenant_id('acme')
        assert tenant.status == Tenant.STATUS_FAILED
        assert tenant.last_error == 'Ledger diverges'


class TestRollbackTenantSchema:
    """Tests for TenantService.rollback_tenant_schema"""

    def test_rollback_then_update(self, db):
        """Test rollback reverts the last changeset and update reapplies it"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        schema_name, step_id = TenantService.rollback_tenant_schema('acme')

        assert schema_name == 'tenant_acme'
        assert step_id == 'create-users-table'
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_READY

        _, applied = TenantService.update_tenant_schema('acme')
        assert applied == ['create-users-table']

    def test_rollback_nothing_applied(self, db):
        """Test a second rollback fails and records the error"""
        TenantService.provision_tenant('acme', 'Acme Corp')
        TenantService.rollback_tenant_schema('acme')

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.rollback_tenant_schema('acme')

        assert exc_info.value.operation == 'rollback'
        assert isinstance(exc_info.value.cause, RollbackError)

        tenant = Tenant.find_by_tenant_id('acme')
        assert tenant.status == Tenant.STATUS_FAILED
        assert 'No applied changeset' in tenant.last_error

    def test_failed_tenant_recovers_with_update(self, db):
        """Test FAILED -> MIGRATING -> READY"""
        TenantService.provision_tenant('acme', 'Acme Corp')
        TenantService.rollback_tenant_schema('acme')
        with pytest.raises(ProvisioningError):
            TenantService.rollback_tenant_schema('acme')

        _, applied = TenantService.update_tenant_schema('acme')

        tenant = Tenant.find_by_tenant_id('acme')
        assert applied == ['create-users-table']
        assert tenant.status == Tenant.STATUS_READY
        assert tenant.last_error is None


def hold_ledger_lock(schema_name, owner):
    conn = tenant_db_manager.connect(schema_name)
    try:
        conn.execute(
            update(lock_table)
            .where(lock_table.c.id == LOCK_ROW_ID)
            .values(locked=True, locked_by=owner)
        )
        conn.commit()
    finally:
        conn.close()


class TestReleaseSchemaLock:
    """Tests for TenantService.release_schema_lock"""

    def test_release_interrupted_migration(self, db):
        """Test a tenant stuck in MIGRATING is recoverable after the release"""
        tenant, _ = TenantService.provision_tenant('acme', 'Acme Corp')
        tenant.transition_to(Tenant.STATUS_MIGRATING)
        db.session.commit()
        hold_ledger_lock('tenant_acme', 'dead-host:123')

        schema_name, holder = TenantService.release_schema_lock('acme')

        assert schema_name == 'tenant_acme'
        assert holder == 'dead-host:123'
        tenant = Tenant.find_by_tenant_id('acme')
        assert tenant.status == Tenant.STATUS_FAILED
        assert 'MIGRATING interrupted' in tenant.last_error

        _, applied = TenantService.update_tenant_schema('acme')

        assert applied == []
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_READY

    def test_release_keeps_ready_tenant(self, db):
        """Test releasing a free lock leaves a READY tenant untouched"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        _, holder = TenantService.release_schema_lock('acme')

        assert holder is None
        assert Tenant.find_by_tenant_id('acme').status == Tenant.STATUS_READY

    def test_release_unprovisioned_schema(self, db):
        """Test releasing the lock of a schema that does not exist"""
        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.release_schema_lock('ghost')

        assert exc_info.value.operation == 'release-lock'
        assert isinstance(exc_info.value.cause, SchemaNotFoundError)


class TestTenantQueries:
    """Tests for get_tenant_details and list_tenants"""

    def test_get_tenant_details(self, db):
        """Test details include history and pending changesets"""
        TenantService.provision_tenant('acme', 'Acme Corp')

        details = TenantService.get_tenant_details('acme')

        assert details['tenant'].tenant_id == 'acme'
        assert [row['id'] for row in details['history']] == ['create-users-table']
        assert details['pending'] == []

    def test_get_tenant_details_pending(self, db):
        """Test a reverted changeset is listed as pending"""
        TenantService.provision_tenant('acme', 'Acme Corp')
        TenantService.rollback_tenant_schema('acme')

        details = TenantService.get_tenant_details('acme')

        assert details['history'] == []
        assert details['pending'][0]['id'] == 'create-users-table'
        assert details['pending'][0]['author'] == 'platform'

    def test_get_tenant_details_unknown(self, db):
        """Test unknown tenants return None"""
        assert TenantService.get_tenant_details('ghost') is None

    def test_list_tenants(self, session):
        """Test inactive tenants are only listed on request"""
        session.add_all([
            Tenant(tenant_id='acme', name='Acme Corp'),
            Tenant(tenant_id='globex', name='Globex', is_active=False),
        ])
        session.commit()

        assert [t.tenant_id for t in TenantService.list_tenants()] == ['acme']
        assert len(TenantService.list_tenants(include_inactive=True)) == 2

    @patch('app.services.tenant_service.Tenant.find_by_tenant_id')
    def test_get_tenant_details_registry_unavailable(self, mock_find, db):
        """Test registry failures while reading details are wrapped"""
        mock_find.side_effect = OperationalError('SELECT tenants', {}, Exception('server closed the connection'))

        with pytest.raises(ProvisioningError) as exc_info:
            TenantService.get_tenant_details('acme')

        assert exc_info.value.operation == 'inspect'
        assert isinstance(exc_info.value.cause, DatabaseConnectionError)
