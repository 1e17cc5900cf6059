"""
TenantService - Business Logic for Tenant Schema Management

This service handles tenant provisioning, schema updates and rollbacks. It
separates business logic from the route handlers in the tenants blueprint
and from the CLI.

Key responsibilities:
- Register tenants in the master database (tenant registry)
- Provision the tenant schema through the SchemaProvisioner
- Apply pending changesets to an existing schema (update)
- Revert the last applied changeset (rollback)
- Track each tenant's lifecycle state and last error
- Serialize operations on the same schema (schema_lock)

Architecture:
- Routes and scripts call service methods instead of the provisioner directly
- The registry state is committed before the schema operation starts, so a
  crash leaves the tenant in an in-progress state an operator can see
- Every failure leaves the service as a ProvisioningError; the tenant row is
  marked FAILED with the error message
- No automatic compensation: a failed schema stays in place, rerun update
  (or provision) to recover
"""

import logging
from contextlib import contextmanager
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.models.tenant import Tenant
from app.extensions import db
from app.tenant_db import ProvisioningError, derive_schema_name
from app.tenant_db.exceptions import DatabaseConnectionError, SchemaCreationError, TenantDatabaseError
from app.utils.database import get_provisioner
from app.utils.locks import schema_lock

logger = logging.getLogger(__name__)


class TenantService:
    """
    Service class for tenant schema operations.

    All methods are static since there's no instance state to maintain.
    """

    @staticmethod
    def provision_tenant(
        tenant_id: str,
        tenant_name: str,
        description: Optional[str] = None
    ) -> Tuple[Tenant, List[str]]:
        """
        Register a tenant and provision its schema.

        Flow:
        1. Derive the schema name from tenant_id
        2. Lock the schema
        3. Load or create the registry row (rejecting a schema name owned by another tenant)
        4. Move the tenant to PROVISIONING (committed)
        5. Create the schema and apply every pending changeset
        6. Move the tenant to READY, or FAILED with the error

        Args:
            tenant_id: Tenant identifier
            tenant_name: Display name
            description: Optional description

        Returns:
            Tuple of (Tenant, applied changeset ids)

        Raises:
            ProvisioningError: On any failure (the cause is attached)

        Example:
            tenant, applied = TenantService.provision_tenant('acme', 'Acme Corp')
            tenant.schema_name  # 'tenant_acme'

        Business Rules:
            - Provisioning an already provisioned tenant is idempotent
            - tenant_id and schema_name never change after registration
            - Two identifiers deriving the same schema name are rejected
        """
        with _as_provisioning_error(tenant_id, 'provision'):
            schema_name = derive_schema_name(tenant_id)

            with schema_lock(schema_name):
                tenant = Tenant.find_by_tenant_id(tenant_id)
                if tenant is None:
                    owner = Tenant.find_by_schema_name(schema_name)
                    if owner is not None:
                        raise SchemaCreationError(
                            f"Schema {schema_name} already belongs to tenant '{owner.tenant_id}'"
                        )
                    tenant = Tenant(tenant_id=tenant_id, name=tenant_name, description=description)
                    db.session.add(tenant)
                    logger.info(f"Registering tenant {tenant_id} with schema {schema_name}")
                else:
                    tenant.name = tenant_name
                    if description is not None:
                        tenant.description = description

                TenantService._begin(tenant, Tenant.STATUS_PROVISIONING)

                try:
                    record = get_provisioner().provision(tenant_id, tenant_name, description)
                except ProvisioningError as e:
                    TenantService._fail(tenant, e)
                    raise

                TenantService._succeed(tenant)

        logger.info(
            f"Tenant {tenant_id} provisioned: schema {tenant.schema_name}, "
            f"{len(record.applied_steps)} changeset(s) applied"
        )
        return tenant, record.applied_steps

    @staticmethod
    def update_tenant_schema(tenant_id: str, schema_name: Optional[str] = None) -> Tuple[str, List[str]]:
        """
        Apply the changesets a tenant schema is missing.

        Args:
            tenant_id: Tenant identifier
            schema_name: Target schema (defaults to the registered or derived one)

        Returns:
            Tuple of (schema name, applied changeset ids)

        Raises:
            ProvisioningError: On any failure, including a missing schema
        """
        with _as_provisioning_error(tenant_id, 'update'):
            tenant, schema_name = TenantService._resolve(tenant_id, schema_name)

            with schema_lock(schema_name):
                if tenant is not None:
                    TenantService._begin(tenant, Tenant.STATUS_MIGRATING)

                try:
                    applied = get_provisioner().update(tenant_id, schema_name)
                except ProvisioningError as e:
                    if tenant is not None:
                        TenantService._fail(tenant, e)
                    raise

                if tenant is not None:
                    TenantService._succeed(tenant)

        return schema_name, applied

    @staticmethod
    def rollback_tenant_schema(tenant_id: str, schema_name: Optional[str] = None) -> Tuple[str, str]:
        """
        Revert the last changeset applied to a tenant schema.

        Args:
            tenant_id: Tenant identifier
            schema_name: Target schema (defaults to the registered or derived one)

        Returns:
            Tuple of (schema name, reverted changeset id)

        Raises:
            ProvisioningError: When nothing is applied, the changeset has no
                rollback, or the rollback fails
        """
        with _as_provisioning_error(tenant_id, 'rollback'):
            tenant, schema_name = TenantService._resolve(tenant_id, schema_name)

            with schema_lock(schema_name):
                if tenant is not None:
                    TenantService._begin(tenant, Tenant.STATUS_REVERTING)

                try:
                    step_id = get_provisioner().rollback_last(tenant_id, schema_name)
                except ProvisioningError as e:
                    if tenant is not None:
                        TenantService._fail(tenant, e)
                    raise

                if tenant is not None:
                    TenantService._succeed(tenant)

        return schema_name, step_id

    @staticmethod
    def get_tenant_details(tenant_id: str) -> Optional[Dict]:
        """
        Registry entry of a tenant with its ledger history and pending changesets.

        Returns:
            Dictionary {'tenant', 'history', 'pending'} or None if not registered

        Raises:
            ProvisioningError: If the schema cannot be inspected
        """
        with _as_provisioning_error(tenant_id, 'inspect'):
            tenant = Tenant.find_by_tenant_id(tenant_id)
        if tenant is None:
            return None

        provisioner = get_provisioner()
        history = provisioner.history(tenant_id, tenant.schema_name)
        pending = provisioner.pending(tenant_id, tenant.schema_name)

        return {
            'tenant': tenant,
            'history': history,
            'pending': [
                {
                    'id': step.step_id,
                    'author': step.author,
                    'source': step.source,
                    'description': step.description,
                    'checksum': step.checksum,
                }
                for step in pending
            ],
        }

    @staticmethod
    def release_schema_lock(tenant_id: str, schema_name: Optional[str] = None) -> Tuple[str, Optional[str]]:
        """
        Clear a ledger lock left behind by a crashed run.

        The registry row of an interrupted operation (PROVISIONING, MIGRATING,
        REVERTING) is moved to FAILED so the next update or provision can
        start. Only use it once the lock holder is known to be gone.

        Args:
            tenant_id: Tenant identifier
            schema_name: Target schema (defaults to the registered or derived one)

        Returns:
            Tuple of (schema name, previous lock holder or None)

        Raises:
            ProvisioningError: If the schema does not exist or cannot be reached
        """
        with _as_provisioning_error(tenant_id, 'release-lock'):
            tenant, schema_name = TenantService._resolve(tenant_id, schema_name)

            with schema_lock(schema_name):
                holder = get_provisioner().release_lock(tenant_id, schema_name)

                if tenant is not None and tenant.status in Tenant.IN_PROGRESS_STATUSES:
                    interrupted = tenant.status
                    tenant.transition_to(
                        Tenant.STATUS_FAILED, error=f"{interrupted} interrupted, lock released by operator"
                    )
                    db.session.commit()
                    logger.warning(f"Tenant {tenant_id} moved from {interrupted} to {Tenant.STATUS_FAILED}")

        return schema_name, holder

    @staticmethod
    def list_tenants(include_inactive: bool = False) -> List[Tenant]:
        """List registered tenants, oldest first."""
        if include_inactive:
            return Tenant.query.order_by(Tenant.created_at.asc()).all()
        return Tenant.get_all_active()

    @staticmethod
    def _resolve(tenant_id: str, schema_name: Optional[str]) -> Tuple[Optional[Tenant], str]:
        """Registry row and target schema of an update or rollback."""
        tenant = Tenant.find_by_tenant_id(tenant_id)

        if tenant is None:
            logger.warning(f"Tenant {tenant_id} is not registered, state will not be tracked")
            return None, schema_name or derive_schema_name(tenant_id)

        if schema_name and schema_name != tenant.schema_name:
            raise ValueError(
                f"Schema {schema_name} does not belong to tenant '{tenant_id}' "
                f"(registered schema: {tenant.schema_name})"
            )
        return tenant, tenant.schema_name

    @staticmethod
    def _begin(tenant: Tenant, status: str) -> None:
        try:
            tenant.transition_to(status)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

    @staticmethod
    def _succeed(tenant: Tenant) -> None:
        tenant.transition_to(Tenant.STATUS_READY)
        db.session.commit()

    @staticmethod
    def _fail(tenant: Tenant, error: ProvisioningError) -> None:
        db.session.rollback()
        tenant.transition_to(Tenant.STATUS_FAILED, error=str(error.cause))
        db.session.commit()
        logger.error(f"✗ Tenant {tenant.tenant_id} marked {Tenant.STATUS_FAILED}: {error.cause}")


@contextmanager
def _as_provisioning_error(tenant_id: str, operation: str):
    """Wrap registry, lock and validation failures into a ProvisioningError."""
    try:
        yield
    except ProvisioningError:
        raise
    except (TenantDatabaseError, ValueError) as e:
        db.session.rollback()
        logger.error(f"✗ {operation} rejected for tenant {tenant_id}: {e}")
        raise ProvisioningError(tenant_id, e, operation) from e
    except IntegrityError as e:
        db.session.rollback()
        cause = SchemaCreationError(f"Tenant '{tenant_id}' was registered concurrently: {e.orig}")
        logger.error(f"✗ {operation} rejected for tenant {tenant_id}: {cause}")
        raise ProvisioningError(tenant_id, cause, operation) from e
    except SQLAlchemyError as e:
        try:
            db.session.rollback()
        except SQLAlchemyError:
            logger.warning(f"Registry rollback failed for tenant {tenant_id}", exc_info=True)
        cause = DatabaseConnectionError(f"Tenant registry unavailable: {e}")
        logger.error(f"✗ {operation} failed for tenant {tenant_id}: {cause}", exc_info=True)
        raise ProvisioningError(tenant_id, cause, operation) from e
