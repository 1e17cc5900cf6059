"""
Exceptions raised by the tenant schema provisioning layer.

Low-level errors describe what went wrong inside a single schema operation.
They are wrapped into a ProvisioningError, which carries the tenant
identifier and the operation name, before leaving the provisioner.
"""

from typing import Optional


class TenantDatabaseError(Exception):
    """Base class for tenant schema errors."""


class DatabaseConnectionError(TenantDatabaseError):
    """A database connection could not be acquired."""


class SchemaCreationError(TenantDatabaseError):
    """The schema creation statement failed (privileges, invalid name, ...)."""


class SchemaNotFoundError(TenantDatabaseError):
    """An operation targeted a schema that does not exist."""


class MigrationStepError(TenantDatabaseError):
    """A forward migration step failed, or the ledger diverges from the changelog."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.step_id = step_id


class RollbackError(TenantDatabaseError):
    """Nothing to revert, no reverse action defined, or the reverse action failed."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message)
        self.step_id = step_id


class SchemaLockError(TenantDatabaseError):
    """The per-schema lock could not be acquired."""


class ChangelogError(TenantDatabaseError):
    """The changelog locator could not be loaded or parsed."""


class InvalidStateTransitionError(TenantDatabaseError):
    """A tenant lifecycle transition is not allowed from the current state."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move tenant from {current} to {target}")
        self.current = current
        self.target = target


class ProvisioningError(Exception):
    """
    Single error type crossing the provisioning boundary.

    Attributes:
        tenant_id: Identifier of the tenant the operation was running for
        operation: 'provision', 'update', 'rollback', 'release-lock' or 'inspect'
        cause: The underlying exception
    """

    def __init__(self, tenant_id: str, cause: BaseException, operation: str = 'provision'):
        self.tenant_id = tenant_id
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation.capitalize()} failed for tenant '{tenant_id}': {cause}")
