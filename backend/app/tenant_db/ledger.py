"""
Per-schema migration ledger.

Two bookkeeping tables live inside every tenant schema:

- tenant_changelog: one row per applied step, in execution order
- tenant_changelog_lock: a single row claimed while steps are applied or reverted

Tables are declared without a schema; the connection's schema_translate_map
(PostgreSQL) or the per-schema database (SQLite) puts them in the tenant schema.
"""

import logging
import os
import socket
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean, Column, DateTime, Integer, MetaData, String, Table, Text,
    delete, func, insert, select, update
)
from sqlalchemy.engine import Connection

from app.tenant_db.changelog import MigrationStep
from app.tenant_db.exceptions import SchemaLockError

logger = logging.getLogger(__name__)

LOCK_ROW_ID = 1

ledger_metadata = MetaData()

changelog_table = Table(
    'tenant_changelog',
    ledger_metadata,
    Column('id', String(255), primary_key=True),
    Column('author', String(255), nullable=False),
    Column('source', String(255), nullable=True),
    Column('description', Text, nullable=True),
    Column('checksum', String(32), nullable=True),
    Column('order_executed', Integer, nullable=False),
    Column('applied_at', DateTime(timezone=True), nullable=False),
)

lock_table = Table(
    'tenant_changelog_lock',
    ledger_metadata,
    Column('id', Integer, primary_key=True, autoincrement=False),
    Column('locked', Boolean, nullable=False, default=False),
    Column('locked_at', DateTime(timezone=True), nullable=True),
    Column('locked_by', String(255), nullable=True),
)


def lock_owner() -> str:
    """Identify this process in the lock record."""
    return f"{socket.gethostname()}:{os.getpid()}"


class SchemaLedger:
    """
    Read and write the ledger of one tenant schema.

    The ledger never commits; the provisioner owns transaction boundaries.

    Args:
        conn: Connection already pointed at the tenant schema
        schema_name: Name of the schema (logging and error messages)
    """

    def __init__(self, conn: Connection, schema_name: str):
        self.conn = conn
        self.schema_name = schema_name

    def ensure_tables(self) -> None:
        """Create both ledger tables and the lock row if missing."""
        ledger_metadata.create_all(self.conn, checkfirst=True)

        row = self.conn.execute(
            select(lock_table.c.id).where(lock_table.c.id == LOCK_ROW_ID)
        ).first()
        if row is None:
            self.conn.execute(insert(lock_table).values(id=LOCK_ROW_ID, locked=False))
            logger.debug(f"Created ledger lock row in schema {self.schema_name}")

    def applied(self) -> List[dict]:
        """
        Applied steps in execution order.

        Returns:
            list[dict]: id, author, source, description, checksum, order_executed, applied_at
        """
        result = self.conn.execute(
            select(changelog_table).order_by(changelog_table.c.order_executed)
        )
        return [dict(row._mapping) for row in result]

    def last_applied(self) -> Optional[dict]:
        row = self.conn.execute(
            select(changelog_table)
            .order_by(changelog_table.c.order_executed.desc())
            .limit(1)
        ).first()
        return dict(row._mapping) if row else None

    def record(self, step: MigrationStep) -> None:
        next_order = self.conn.execute(
            select(func.coalesce(func.max(changelog_table.c.order_executed), 0))
        ).scalar() + 1

        self.conn.execute(
            insert(changelog_table).values(
                id=step.step_id,
                author=step.author,
                source=step.source,
                description=step.description,
                checksum=step.checksum,
                order_executed=next_order,
                applied_at=datetime.now(timezone.utc)
            )
        )

    def remove(self, step_id: str) -> None:
        self.conn.execute(delete(changelog_table).where(changelog_table.c.id == step_id))

    def holder(self) -> Optional[str]:
        """Owner of the lock row, None when the schema is not locked."""
        row = self.conn.execute(
            select(lock_table.c.locked, lock_table.c.locked_by)
            .where(lock_table.c.id == LOCK_ROW_ID)
        ).first()
        if row is None or not row.locked:
            return None
        return row.locked_by

    def acquire_lock(self, owner: Optional[str] = None) -> None:
        """
        Claim the lock row. Does not wait.

        Raises:
            SchemaLockError: If another process holds the lock
        """
        owner = owner or lock_owner()
        result = self.conn.execute(
            update(lock_table)
            .where(lock_table.c.id == LOCK_ROW_ID)
            .where(lock_table.c.locked == False)  # noqa: E712
            .values(locked=True, locked_at=datetime.now(timezone.utc), locked_by=owner)
        )

        if result.rowcount != 1:
            locked_at = self.conn.execute(
                select(lock_table.c.locked_at).where(lock_table.c.id == LOCK_ROW_ID)
            ).scalar()
            raise SchemaLockError(
                f"Schema {self.schema_name} is locked by {self.holder()} since {locked_at}"
            )

        logger.debug(f"Ledger lock acquired on {self.schema_name} by {owner}")

    def release_lock(self) -> None:
        self.conn.execute(
            update(lock_table)
            .where(lock_table.c.id == LOCK_ROW_ID)
            .values(locked=False, locked_at=None, locked_by=None)
        )
        logger.debug(f"Ledger lock released on {self.schema_name}")
