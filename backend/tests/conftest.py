"""
Test Configuration and Fixtures

This module provides pytest fixtures and configuration for the test suite.
Fixtures are reusable test resources that can be injected into test functions.

Key fixtures:
- app: Flask application instance with test configuration
- db: Database instance (tenant registry) for test isolation
- session: Registry session
- client: Flask test client for making HTTP requests
- tenant_connections: SQLite connection factory, one in-memory database per schema
- build_changelog: Factory of in-memory changelogs (reversible table creations)
- provisioner: SchemaProvisioner over tenant_connections and a 3-step changelog
"""

import pytest
import os

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from app import create_app
from app.extensions import db as _db
from app.tenant_db import Changelog, MigrationStep, ProvisionerConfig, SchemaProvisioner
from app.utils.database import tenant_db_manager


@pytest.fixture(scope='function')
def app():
    """
    Create Flask application for testing.

    Scope: function - every test gets a fresh in-memory registry and
    fresh in-memory tenant databases.

    Returns:
        Flask application configured for testing
    """
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app('testing')

    with app.app_context():
        yield app

    tenant_db_manager.close_all_connections()


@pytest.fixture(scope='function')
def db(app):
    """
    Create registry tables for testing.

    Creates all tables before the test and drops them afterwards.

    Returns:
        SQLAlchemy database instance
    """
    _db.create_all()

    yield _db

    _db.session.remove()
    _db.drop_all()


@pytest.fixture(scope='function')
def session(db):
    """Registry session of the current test."""
    return db.session


@pytest.fixture(scope='function')
def client(app, db):
    """
    Create Flask test client.

    Returns:
        Flask test client for making HTTP requests
    """
    return app.test_client()


@pytest.fixture(scope='function')
def tenant_connections():
    """
    Connection factory handing out one in-memory SQLite database per schema.

    The engines stay alive for the whole test so schemas keep their content
    between connections. Exposed as connect.engines for direct inspection.
    """
    engines = {}

    def connect(schema_name):
        if schema_name not in engines:
            engines[schema_name] = create_engine(
                'sqlite://',
                poolclass=StaticPool,
                connect_args={'check_same_thread': False}
            )
        return engines[schema_name].connect()

    connect.engines = engines

    yield connect

    for engine in engines.values():
        engine.dispose()


def make_table_step(table: str, reversible: bool = True) -> MigrationStep:
    """Step creating a one-column table, dropped by its reverse action."""
    def upgrade(conn):
        conn.exec_driver_sql(f'CREATE TABLE {table} (id INTEGER PRIMARY KEY, label VARCHAR(50))')

    def downgrade(conn):
        conn.exec_driver_sql(f'DROP TABLE {table}')

    return MigrationStep(
        step_id=f'create-{table}',
        upgrade=upgrade,
        author='tests',
        downgrade=downgrade if reversible else None,
        description=f'Create {table}',
        source='conftest',
        body=f'CREATE TABLE {table}'
    )


@pytest.fixture
def build_changelog():
    """
    Factory of changelogs creating tables items_1 .. items_n.

    Example:
        changelog = build_changelog(2)   # create-items_1, create-items_2
    """
    def build(count: int = 3, extra=None) -> Changelog:
        changelog = Changelog(source='tests')
        for index in range(1, count + 1):
            changelog.add(make_table_step(f'items_{index}'))
        for step in extra or []:
            changelog.add(step)
        return changelog

    return build


@pytest.fixture
def make_provisioner(tenant_connections):
    """Factory of SQLite provisioners sharing the tenant_connections databases."""
    def make(changelog, connection_factory=None) -> SchemaProvisioner:
        return SchemaProvisioner(ProvisionerConfig(
            changelog=changelog,
            connection_factory=connection_factory or tenant_connections,
            dialect='sqlite',
            lock_owner='pytest'
        ))

    return make


@pytest.fixture
def provisioner(make_provisioner, build_changelog):
    """SchemaProvisioner with a 3-step reversible changelog."""
    return make_provisioner(build_changelog(3))


@pytest.fixture
def list_tables(tenant_connections):
    """Names of the tables of a tenant schema, sorted."""
    def tables(schema_name):
        conn = tenant_connections(schema_name)
        try:
            return sorted(conn.exec_driver_sql(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).scalars().all())
        finally:
            conn.close()

    return tables


@pytest.fixture
def table_step():
    """make_table_step, for tests building their own changelogs."""
    return make_table_step
