"""
Per-schema advisory locks.

Operations on the same tenant schema must not run concurrently. When Redis is
configured the lock is shared by every worker (redis-py Lock); otherwise it is
a threading.Lock local to this process.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Generator, Optional

from redis.exceptions import LockError, RedisError

from app.extensions import redis_manager
from app.tenant_db.exceptions import SchemaLockError

logger = logging.getLogger(__name__)

LOCK_KEY_PREFIX = 'tenant-schema-lock:'

_local_locks: Dict[str, threading.Lock] = {}
_registry_guard = threading.Lock()


def _local_lock(schema_name: str) -> threading.Lock:
    with _registry_guard:
        lock = _local_locks.get(schema_name)
        if lock is None:
            lock = _local_locks[schema_name] = threading.Lock()
        return lock


@contextmanager
def schema_lock(
    schema_name: str,
    timeout: Optional[float] = None,
    blocking_timeout: Optional[float] = None
) -> Generator[None, None, None]:
    """
    Hold the lock of a tenant schema for the duration of the block.

    Args:
        schema_name: Schema to lock
        timeout: Lock expiry in seconds (Redis only, protects against dead holders)
        blocking_timeout: Seconds to wait for the lock before giving up

    Raises:
        SchemaLockError: If the lock cannot be acquired in time

    Example:
        >>> with schema_lock('tenant_acme'):
        ...     provisioner.update('acme', 'tenant_acme')
    """
    timeout, blocking_timeout = _lock_settings(timeout, blocking_timeout)

    client = redis_manager.get_client()
    if client is not None:
        with _redis_lock(client, schema_name, timeout, blocking_timeout):
            yield
        return

    lock = _local_lock(schema_name)
    if not lock.acquire(timeout=blocking_timeout):
        raise SchemaLockError(
            f"Schema {schema_name} is busy: another operation is running (waited {blocking_timeout}s)"
        )
    logger.debug(f"Local lock acquired for schema {schema_name}")
    try:
        yield
    finally:
        lock.release()
        logger.debug(f"Local lock released for schema {schema_name}")


@contextmanager
def _redis_lock(client, schema_name: str, timeout: float, blocking_timeout: float):
    lock = client.lock(
        f"{LOCK_KEY_PREFIX}{schema_name}",
        timeout=timeout,
        blocking_timeout=blocking_timeout
    )

    try:
        acquired = lock.acquire(blocking=True)
    except RedisError as e:
        raise SchemaLockError(f"Cannot acquire Redis lock for schema {schema_name}: {e}") from e

    if not acquired:
        raise SchemaLockError(
            f"Schema {schema_name} is busy: another operation is running (waited {blocking_timeout}s)"
        )

    logger.debug(f"Redis lock acquired for schema {schema_name}")
    try:
        yield
    finally:
        try:
            lock.release()
            logger.debug(f"Redis lock released for schema {schema_name}")
        except LockError as e:
            # Expired while held: the operation outlived SCHEMA_LOCK_TIMEOUT
            logger.warning(f"Redis lock for schema {schema_name} was lost before release: {e}")


def _lock_settings(timeout: Optional[float], blocking_timeout: Optional[float]):
    from flask import current_app, has_app_context

    if has_app_context():
        if timeout is None:
            timeout = current_app.config.get('SCHEMA_LOCK_TIMEOUT', 600)
        if blocking_timeout is None:
            blocking_timeout = current_app.config.get('SCHEMA_LOCK_BLOCKING_TIMEOUT', 5)

    return (
        600 if timeout is None else timeout,
        5 if blocking_timeout is None else blocking_timeout,
    )
