"""
Database utilities for multi-tenant schema management.

Provides the tenant connection factory and the SchemaProvisioner bound to the
Flask application configuration.
"""

from pathlib import Path
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.pool import StaticPool
import logging

from app.tenant_db import ProvisionerConfig, SchemaProvisioner
from app.tenant_db.dialects import dialect_name_for_url, ensure_schema_name, get_dialect

logger = logging.getLogger(__name__)

SCHEMA_PLACEHOLDER = '{schema_name}'


class TenantDatabaseManager:
    """
    Manages tenant schema connections and the schema provisioner.

    PostgreSQL tenants share one engine (one database, one schema per tenant).
    SQLite tenants get one engine per schema, each schema being its own database.
    """

    def __init__(self, app=None):
        """
        Initialize the tenant database manager.

        Args:
            app: Flask application instance (optional, can be set later with init_app)
        """
        self.app = app
        self._engines = {}  # Cache of tenant engines (key: schema name, or None when shared)
        self.provisioner: Optional[SchemaProvisioner] = None

        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        """
        Initialize the manager with Flask app configuration.

        Args:
            app: Flask application instance

        Raises:
            ValueError: If the configured dialect is not supported
        """
        self.app = app
        self.close_all_connections()

        self.tenant_db_url = app.config.get('TENANT_DATABASE_URL') or app.config['SQLALCHEMY_DATABASE_URI']
        dialect_name = dialect_name_for_url(
            self.tenant_db_url.replace(SCHEMA_PLACEHOLDER, 'tenant'),
            app.config.get('TENANT_DB_DIALECT')
        )
        self.dialect = get_dialect(dialect_name)

        engine_options = app.config.get('SQLALCHEMY_ENGINE_OPTIONS') or {}
        self.pool_size = engine_options.get('pool_size', 10)
        self.pool_timeout = engine_options.get('pool_timeout', 30)
        self.pool_recycle = engine_options.get('pool_recycle', 3600)
        self.max_overflow = engine_options.get('max_overflow', 20)

        self.provisioner = SchemaProvisioner(ProvisionerConfig(
            changelog=app.config['TENANT_CHANGELOG'],
            connection_factory=self.connect,
            dialect=self.dialect
        ))

        logger.info(
            f"Tenant database manager ready (dialect: {self.dialect.name}, "
            f"changelog: {app.config['TENANT_CHANGELOG']})"
        )

    def get_tenant_db_url(self, schema_name: str) -> str:
        """
        Database URL holding a tenant schema.

        Example:
            >>> manager.get_tenant_db_url('tenant_123')   # sqlite:////data/app.db
            'sqlite:////data/tenant_123.db'
        """
        if not self.dialect.separate_databases:
            return self.tenant_db_url

        if SCHEMA_PLACEHOLDER in self.tenant_db_url:
            return self.tenant_db_url.replace(SCHEMA_PLACEHOLDER, schema_name)

        url = make_url(self.tenant_db_url)
        if not url.database or url.database == ':memory:':
            return 'sqlite://'

        database = Path(url.database)
        return url.set(database=str(database.with_name(f"{schema_name}.db"))).render_as_string(
            hide_password=False
        )

    def get_tenant_engine(self, schema_name: str) -> Engine:
        """
        Get or create the engine serving a tenant schema.

        Engines are cached for reuse.

        Args:
            schema_name: Name of the tenant schema

        Returns:
            SQLAlchemy Engine instance
        """
        key = schema_name if self.dialect.separate_databases else None

        if key not in self._engines:
            db_url = self.get_tenant_db_url(schema_name)
            echo = self.app.config.get('SQLALCHEMY_ECHO', False)

            if make_url(db_url).get_backend_name() == 'sqlite':
                options = {'connect_args': {'check_same_thread': False}}
                if make_url(db_url).database in (None, '', ':memory:'):
                    # In-memory database must survive across connections
                    options['poolclass'] = StaticPool
                engine = create_engine(db_url, echo=echo, **options)
            else:
                engine = create_engine(
                    db_url,
                    pool_size=self.pool_size,
                    pool_timeout=self.pool_timeout,
                    pool_recycle=self.pool_recycle,
                    max_overflow=self.max_overflow,
                    pool_pre_ping=True,
                    echo=echo
                )

            self._engines[key] = engine
            logger.info(f"Created engine for tenant schema: {schema_name if key else 'shared'}")

        return self._engines[key]

    def connect(self, schema_name: str) -> Connection:
        """
        Open a connection for a tenant schema (connection factory of the provisioner).

        Args:
            schema_name: Name of the tenant schema

        Returns:
            SQLAlchemy Connection, closed by the caller
        """
        ensure_schema_name(schema_name)
        return self.get_tenant_engine(schema_name).connect()

    def close_all_connections(self):
        """
        Close all cached database connections and dispose engines.

        Useful for cleanup during application shutdown or testing.
        """
        if self._engines:
            logger.info("Closing all tenant database connections")

        for engine in self._engines.values():
            engine.dispose()

        self._engines.clear()


# Global instance to be initialized with Flask app
tenant_db_manager = TenantDatabaseManager()


def init_tenant_db_manager(app):
    """
    Initialize the global tenant database manager with Flask app.

    Args:
        app: Flask application instance

    Example:
        >>> from app.utils.database import init_tenant_db_manager
        >>> init_tenant_db_manager(app)
    """
    tenant_db_manager.init_app(app)


def get_provisioner() -> SchemaProvisioner:
    """
    Provisioner of the running application.

    Raises:
        RuntimeError: If the manager was not initialized
    """
    if tenant_db_manager.provisioner is None:
        raise RuntimeError("Tenant database manager is not initialized")
    return tenant_db_manager.provisioner
