"""
Tenant Schema Provisioner

Turns a tenant identifier into an isolated, migrated database schema:

1. derive the schema name from the tenant identifier (tenant_<slug>)
2. acquire a connection
3. create the schema if it does not exist
4. point the connection at the schema
5. apply every changelog step not yet recorded in the schema's ledger
6. release the connection

Steps are committed one by one. When a step fails, the schema and the steps
already applied stay in place; rerunning update() applies the missing suffix.

Callers must serialize operations on the same schema (see app.utils.locks).
The ledger lock row additionally rejects a concurrent run from another process.
"""

import logging
import re
from contextlib import contextmanager
from typing import Callable, Generator, List, Optional, Union

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from app.tenant_db.changelog import Changelog, MigrationStep, load_changelog
from app.tenant_db.dialects import SchemaDialect, ensure_schema_name, get_dialect
from app.tenant_db.exceptions import (
    DatabaseConnectionError,
    MigrationStepError,
    ProvisioningError,
    RollbackError,
    SchemaCreationError,
    SchemaNotFoundError,
    TenantDatabaseError,
)
from app.tenant_db.ledger import SchemaLedger, changelog_table, lock_owner

logger = logging.getLogger(__name__)

SCHEMA_PREFIX = 'tenant_'

_UNSAFE_CHARS = re.compile(r'[^a-z0-9_]')

ConnectionFactory = Callable[[str], Connection]


def derive_schema_name(tenant_id: str) -> str:
    """
    Derive the schema name of a tenant.

    Lowercases the identifier, replaces every character outside [a-z0-9_]
    with an underscore and prefixes the result with "tenant_". Pure function.

    Args:
        tenant_id: Non-empty tenant identifier

    Returns:
        str: Schema name

    Raises:
        ValueError: If tenant_id is empty or not a string

    Examples:
        "abc123"   -> "tenant_abc123"
        "ABC-123!" -> "tenant_abc_123_"
        "!!!"      -> "tenant____"
    """
    if not isinstance(tenant_id, str) or not tenant_id:
        raise ValueError("Tenant identifier must be a non-empty string")
    return SCHEMA_PREFIX + _UNSAFE_CHARS.sub('_', tenant_id.lower())


class TenantRecord:
    """
    Result of a provisioning run.

    Attributes:
        tenant_id (str): Tenant identifier
        tenant_name (str): Display name
        schema_name (str): Derived schema name
        active (bool): Always True for a freshly provisioned tenant
        description (str | None): Optional description
        applied_steps (list[str]): Changeset ids applied by this run
    """

    def __init__(
        self,
        tenant_id: str,
        tenant_name: str,
        schema_name: str,
        active: bool = True,
        description: Optional[str] = None,
        applied_steps: Optional[List[str]] = None
    ):
        self.tenant_id = tenant_id
        self.tenant_name = tenant_name
        self.schema_name = schema_name
        self.active = active
        self.description = description
        self.applied_steps = applied_steps or []

    def to_dict(self) -> dict:
        return {
            'tenant_id': self.tenant_id,
            'tenant_name': self.tenant_name,
            'schema_name': self.schema_name,
            'active': self.active,
            'description': self.description,
            'applied_steps': list(self.applied_steps),
        }

    def __repr__(self) -> str:
        return f"<TenantRecord(tenant_id='{self.tenant_id}', schema='{self.schema_name}')>"


class ProvisionerConfig:
    """
    Explicit configuration of a SchemaProvisioner.

    Args:
        changelog: Changelog instance or locator (SQL directory/file, module path)
        connection_factory: Callable taking a schema name, returning a SQLAlchemy Connection
        dialect: Dialect name ('postgresql', 'sqlite') or SchemaDialect instance
        lock_owner: Name written in the ledger lock row (default: host:pid)
    """

    def __init__(
        self,
        changelog: Union[str, Changelog],
        connection_factory: ConnectionFactory,
        dialect: Union[str, SchemaDialect] = 'postgresql',
        lock_owner: Optional[str] = None
    ):
        self.changelog = changelog
        self.connection_factory = connection_factory
        self.dialect = dialect
        self.lock_owner = lock_owner


class SchemaProvisioner:
    """Create tenant schemas and move them along the changelog."""

    derive_schema_name = staticmethod(derive_schema_name)

    def __init__(self, config: ProvisionerConfig):
        self.config = config
        if isinstance(config.dialect, SchemaDialect):
            self.dialect = config.dialect
        else:
            self.dialect = get_dialect(config.dialect)
        self.lock_owner = config.lock_owner or lock_owner()
        self._changelog: Optional[Changelog] = None

    @property
    def changelog(self) -> Changelog:
        """The changelog, loaded on first use."""
        if self._changelog is None:
            self._changelog = load_changelog(self.config.changelog)
        return self._changelog

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def provision(self, tenant_id: str, tenant_name: str, description: Optional[str] = None) -> TenantRecord:
        """
        Create the tenant schema if needed and apply all pending steps.

        Idempotent: a second call on the same tenant applies nothing.

        Args:
            tenant_id: Tenant identifier
            tenant_name: Display name
            description: Optional description

        Returns:
            TenantRecord: The provisioned tenant (active=True)

        Raises:
            ProvisioningError: Wrapping the connection, schema or step failure
        """
        logger.info(f"Provisioning new tenant: {tenant_name} ({tenant_id})")

        with self._failures(tenant_id, 'provision'):
            schema_name = derive_schema_name(tenant_id)
            ensure_schema_name(schema_name)
            applied = self._migrate(schema_name, create=True)

        logger.info(f"Successfully provisioned tenant: {tenant_id} with schema: {schema_name}")
        return TenantRecord(
            tenant_id=tenant_id,
            tenant_name=tenant_name,
            schema_name=schema_name,
            active=True,
            description=description,
            applied_steps=applied
        )

    def update(self, tenant_id: str, schema_name: str) -> List[str]:
        """
        Apply the steps an existing schema is missing.

        Returns:
            list[str]: Ids of the applied steps (empty when up to date)

        Raises:
            ProvisioningError: Wrapping SchemaNotFoundError, step or connection failures
        """
        logger.info(f"Updating schema {schema_name} for tenant: {tenant_id}")

        with self._failures(tenant_id, 'update'):
            ensure_schema_name(schema_name)
            applied = self._migrate(schema_name, create=False)

        if applied:
            logger.info(f"Applied {len(applied)} changeset(s) to {schema_name}: {', '.join(applied)}")
        else:
            logger.info(f"Schema {schema_name} already up to date")
        return applied

    def rollback_last(self, tenant_id: str, schema_name: str) -> str:
        """
        Revert the most recently applied step of a schema.

        Returns:
            str: Id of the reverted step

        Raises:
            ProvisioningError: Wrapping RollbackError when nothing is applied,
                the step has no reverse action, or the reverse action fails
        """
        logger.info(f"Rolling back last changeset for tenant: {tenant_id} in schema: {schema_name}")

        with self._failures(tenant_id, 'rollback'):
            ensure_schema_name(schema_name)
            with self._schema_connection(schema_name, create=False) as conn:
                with self._ledger_locked(conn, schema_name) as ledger:
                    step_id = self._revert_last(conn, ledger, schema_name)

        logger.info(f"Successfully rolled back changeset '{step_id}' for tenant: {tenant_id}")
        return step_id

    def release_lock(self, tenant_id: str, schema_name: str) -> Optional[str]:
        """
        Force-release the ledger lock of a schema.

        For locks left behind by a process that died mid-run. Never call it
        while a migration of the schema may still be running.

        Returns:
            str | None: Previous lock holder, None when the schema was not locked

        Raises:
            ProvisioningError: Wrapping SchemaNotFoundError or connection failures
        """
        with self._failures(tenant_id, 'release-lock'):
            ensure_schema_name(schema_name)
            with self._schema_connection(schema_name, create=False) as conn:
                ledger = self._prepare_ledger(conn, schema_name)
                holder = ledger.holder()
                ledger.release_lock()
                conn.commit()

        if holder:
            logger.warning(f"Ledger lock on {schema_name} held by {holder} released for tenant: {tenant_id}")
        else:
            logger.info(f"Schema {schema_name} was not locked")
        return holder

    def pending(self, tenant_id: str, schema_name: str) -> List[MigrationStep]:
        """Steps update() would apply, in order. A missing schema has every step pending."""
        with self._failures(tenant_id, 'inspect'):
            ensure_schema_name(schema_name)
            applied = self._read_applied(schema_name)
            return self._pending_steps(applied, schema_name)

    def history(self, tenant_id: str, schema_name: str) -> List[dict]:
        """Ledger rows of a schema in execution order (empty when never migrated)."""
        with self._failures(tenant_id, 'inspect'):
            ensure_schema_name(schema_name)
            return self._read_applied(schema_name)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _failures(self, tenant_id: str, operation: str) -> Generator[None, None, None]:
        """Wrap every failure of an operation into a ProvisioningError."""
        try:
            yield
        except (TenantDatabaseError, ValueError) as e:
            logger.error(f"✗ {operation} failed for tenant {tenant_id}: {e}", exc_info=True)
            raise ProvisioningError(tenant_id, e, operation) from e
        except SQLAlchemyError as e:
            cause = MigrationStepError(f"Ledger operation failed: {e}")
            logger.error(f"✗ {operation} failed for tenant {tenant_id}: {e}", exc_info=True)
            raise ProvisioningError(tenant_id, cause, operation) from e

    @contextmanager
    def _schema_connection(self, schema_name: str, create: bool) -> Generator[Connection, None, None]:
        """Connection pointed at the schema; the search path is reset on release."""
        try:
            conn = self.config.connection_factory(schema_name)
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(f"Cannot connect to database for schema {schema_name}: {e}") from e

        try:
            options = self.dialect.execution_options(schema_name)
            if options:
                conn = conn.execution_options(**options)

            if create:
                try:
                    self.dialect.create_schema(conn, schema_name)
                    conn.commit()
                except SQLAlchemyError as e:
                    conn.rollback()
                    raise SchemaCreationError(f"Cannot create schema {schema_name}: {e}") from e
                logger.info(f"Schema '{schema_name}' created or already exists")
            elif not self.dialect.schema_exists(conn, schema_name):
                raise SchemaNotFoundError(f"Schema {schema_name} does not exist")

            self.dialect.set_search_path(conn, schema_name)
            conn.commit()

            yield conn
        finally:
            try:
                conn.rollback()
                self.dialect.reset_search_path(conn)
                conn.commit()
            finally:
                conn.close()

    def _prepare_ledger(self, conn: Connection, schema_name: str) -> SchemaLedger:
        ledger = SchemaLedger(conn, schema_name)
        ledger.ensure_tables()
        conn.commit()
        return ledger

    @contextmanager
    def _ledger_locked(self, conn: Connection, schema_name: str) -> Generator[SchemaLedger, None, None]:
        """
        Hold the ledger lock row of the schema.

        A failure to release after an error is logged; the original error propagates.
        """
        ledger = self._prepare_ledger(conn, schema_name)
        ledger.acquire_lock(self.lock_owner)
        conn.commit()

        try:
            yield ledger
        except Exception:
            try:
                self._release(conn, ledger)
            except SQLAlchemyError:
                logger.error(
                    f"✗ Could not release ledger lock on {schema_name}, "
                    "run release-lock once no migration is running",
                    exc_info=True
                )
            raise

        self._release(conn, ledger)

    def _release(self, conn: Connection, ledger: SchemaLedger) -> None:
        conn.rollback()
        ledger.release_lock()
        conn.commit()

    def _migrate(self, schema_name: str, create: bool) -> List[str]:
        with self._schema_connection(schema_name, create=create) as conn:
            with self._ledger_locked(conn, schema_name) as ledger:
                return self._apply_pending(conn, ledger, schema_name)

    def _apply_pending(self, conn: Connection, ledger: SchemaLedger, schema_name: str) -> List[str]:
        pending = self._pending_steps(ledger.applied(), schema_name)
        applied = []

        for step in pending:
            logger.info(f"Applying changeset {step.author}:{step.step_id} to {schema_name}")
            try:
                step.upgrade(conn)
                ledger.record(step)
                conn.commit()
            except Exception as e:
                conn.rollback()
                logger.error(f"✗ Changeset {step.step_id} failed on {schema_name}: {e}")
                raise MigrationStepError(
                    f"Changeset '{step.step_id}' failed: {e}", step_id=step.step_id
                ) from e

            applied.append(step.step_id)
            logger.info(f"✓ Changeset {step.step_id} applied to {schema_name}")

        return applied

    def _revert_last(self, conn: Connection, ledger: SchemaLedger, schema_name: str) -> str:
        last = ledger.last_applied()
        if last is None:
            raise RollbackError(f"No applied changeset to roll back in schema {schema_name}")

        step_id = last['id']
        step = self.changelog.get(step_id)
        if step is None:
            raise RollbackError(
                f"Changeset '{step_id}' is not in the changelog, no rollback available", step_id=step_id
            )
        if not step.reversible:
            raise RollbackError(f"Changeset '{step_id}' has no rollback action", step_id=step_id)

        try:
            step.downgrade(conn)
            ledger.remove(step_id)
            conn.commit()
        except Exception as e:
            conn.rollback()
            logger.error(f"✗ Rollback of changeset {step_id} failed on {schema_name}: {e}")
            raise RollbackError(f"Rollback of changeset '{step_id}' failed: {e}", step_id=step_id) from e

        logger.info(f"✓ Changeset {step_id} rolled back on {schema_name}")
        return step_id

    def _pending_steps(self, applied: List[dict], schema_name: str) -> List[MigrationStep]:
        """
        Missing suffix of the changelog.

        The ledger must be a prefix of the changelog; anything else means
        steps were reordered or removed after being applied.
        """
        steps = list(self.changelog)

        for position, row in enumerate(applied):
            expected = steps[position].step_id if position < len(steps) else None
            if row['id'] != expected:
                raise MigrationStepError(
                    f"Ledger of schema {schema_name} diverges from the changelog at position "
                    f"{position + 1}: applied '{row['id']}', changelog has '{expected}'",
                    step_id=row['id']
                )
            if row.get('checksum') and row['checksum'] != steps[position].checksum:
                logger.warning(
                    f"Changeset {row['id']} changed since it was applied to {schema_name} "
                    f"(checksum {row['checksum']} != {steps[position].checksum})"
                )

        return steps[len(applied):]

    def _read_applied(self, schema_name: str) -> List[dict]:
        try:
            with self._schema_connection(schema_name, create=False) as conn:
                ledger_schema = None if self.dialect.separate_databases else schema_name
                if not inspect(conn).has_table(changelog_table.name, schema=ledger_schema):
                    return []
                return SchemaLedger(conn, schema_name).applied()
        except SchemaNotFoundError:
            return []
