"""
Database dialect strategies for tenant schemas.

The dialect is chosen once at startup from a closed set (TENANT_DB_DIALECT,
or the scheme of the tenant database URL). Each strategy knows how to create
a schema, test for its existence and point a connection at it.
"""

import logging
import re
from typing import Dict, Optional, Type

from sqlalchemy import text
from sqlalchemy.engine import Connection, make_url

logger = logging.getLogger(__name__)

SCHEMA_NAME_PATTERN = re.compile(r'^[a-z0-9_]+$')

# PostgreSQL identifier limit
MAX_SCHEMA_NAME_LENGTH = 63


def ensure_schema_name(schema_name: str) -> str:
    """
    Validate a schema name before it is embedded in a statement.

    Args:
        schema_name: Candidate schema name

    Returns:
        str: The same schema name

    Raises:
        ValueError: If the name is empty, too long or not [a-z0-9_]
    """
    if not schema_name or not SCHEMA_NAME_PATTERN.match(schema_name):
        raise ValueError(
            f"Invalid schema name: {schema_name!r}. "
            "Must contain only lowercase letters, numbers, and underscores."
        )
    if len(schema_name) > MAX_SCHEMA_NAME_LENGTH:
        raise ValueError(f"Schema name exceeds {MAX_SCHEMA_NAME_LENGTH} characters: {schema_name}")
    return schema_name


class SchemaDialect:
    """Base strategy. Subclasses implement the schema primitives of one database."""

    name: str = ''

    # True when each schema lives in its own database (one engine per schema)
    separate_databases = False

    def create_schema(self, conn: Connection, schema_name: str) -> None:
        """Create the schema; must be a no-op when it already exists."""
        raise NotImplementedError

    def schema_exists(self, conn: Connection, schema_name: str) -> bool:
        raise NotImplementedError

    def set_search_path(self, conn: Connection, schema_name: str) -> None:
        raise NotImplementedError

    def reset_search_path(self, conn: Connection) -> None:
        raise NotImplementedError

    def execution_options(self, schema_name: str) -> dict:
        """Connection options routing unqualified tables to the schema."""
        return {'schema_translate_map': {None: schema_name}}

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"


class PostgresDialect(SchemaDialect):
    """PostgreSQL: real schemas and a per-connection search_path."""

    name = 'postgresql'

    def create_schema(self, conn: Connection, schema_name: str) -> None:
        conn.exec_driver_sql(f'CREATE SCHEMA IF NOT EXISTS "{ensure_schema_name(schema_name)}"')

    def schema_exists(self, conn: Connection, schema_name: str) -> bool:
        result = conn.execute(
            text("SELECT 1 FROM information_schema.schemata WHERE schema_name = :schema"),
            {"schema": schema_name}
        )
        return result.first() is not None

    def set_search_path(self, conn: Connection, schema_name: str) -> None:
        conn.exec_driver_sql(f'SET search_path TO "{ensure_schema_name(schema_name)}"')

    def reset_search_path(self, conn: Connection) -> None:
        conn.exec_driver_sql('RESET search_path')


class SqliteDialect(SchemaDialect):
    """
    SQLite: every tenant schema is its own database.

    Used for tests and local runs. The connection factory hands out a
    connection to the schema's database, so there is no search path to set
    and unqualified statements land in the tenant database. The database
    comes into existence on first connection; it counts as an existing
    schema once it holds at least one table (the ledger, after provisioning).
    """

    name = 'sqlite'
    separate_databases = True

    def create_schema(self, conn: Connection, schema_name: str) -> None:
        ensure_schema_name(schema_name)

    def schema_exists(self, conn: Connection, schema_name: str) -> bool:
        count = conn.exec_driver_sql(
            "SELECT count(*) FROM sqlite_master WHERE type = 'table'"
        ).scalar()
        return bool(count)

    def set_search_path(self, conn: Connection, schema_name: str) -> None:
        pass

    def reset_search_path(self, conn: Connection) -> None:
        pass

    def execution_options(self, schema_name: str) -> dict:
        return {}


DIALECTS: Dict[str, Type[SchemaDialect]] = {
    PostgresDialect.name: PostgresDialect,
    SqliteDialect.name: SqliteDialect,
}


def get_dialect(name: str) -> SchemaDialect:
    """
    Instantiate the dialect strategy registered under name.

    Raises:
        ValueError: If the dialect is not supported
    """
    dialect_class = DIALECTS.get((name or '').lower())
    if dialect_class is None:
        raise ValueError(
            f"Unsupported tenant database dialect: {name!r}. "
            f"Supported: {', '.join(sorted(DIALECTS))}"
        )
    return dialect_class()


def dialect_name_for_url(database_url: str, configured: Optional[str] = None) -> str:
    """
    Resolve the dialect name: the configured one wins, else the URL backend.

    Example:
        >>> dialect_name_for_url('postgresql+psycopg2://u:p@db/app')
        'postgresql'
    """
    if configured:
        return configured.lower()
    return make_url(database_url).get_backend_name()
