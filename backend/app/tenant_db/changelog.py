"""
Changelog - ordered collection of tenant schema migration steps

Every tenant schema receives the same step sequence. The sequence is loaded
from a single locator (TENANT_CHANGELOG) which can point to:

- a directory of formatted SQL files, applied in file name order
- a single formatted SQL file
- a Python module exposing a Changelog object ("package.module" or
  "package.module:attribute", default attribute: changelog)

Formatted SQL example:

    -- formatted sql

    --changeset platform:create-users-table
    --comment: Users of the tenant
    CREATE TABLE IF NOT EXISTS users (
        id BIGSERIAL PRIMARY KEY,
        email VARCHAR(100) NOT NULL UNIQUE
    );
    --rollback DROP TABLE IF EXISTS users;

Python example:

    changelog = Changelog()

    @changelog.step('add-users-phone', author='ops')
    def add_users_phone(conn):
        '''Add a phone column to the users table'''
        conn.execute(text("ALTER TABLE users ADD COLUMN phone VARCHAR(20)"))

    @changelog.reverse('add-users-phone')
    def drop_users_phone(conn):
        conn.execute(text("ALTER TABLE users DROP COLUMN phone"))
"""

import hashlib
import importlib
import inspect
import logging
import re
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from sqlalchemy.engine import Connection

from app.tenant_db.exceptions import ChangelogError

logger = logging.getLogger(__name__)

StepAction = Callable[[Connection], None]

_HEADER_RE = re.compile(r'^--\s*(liquibase\s+)?formatted\s+sql\s*$', re.IGNORECASE)
_CHANGESET_RE = re.compile(r'^--\s*changeset\s+([^:\s]+):(\S+)', re.IGNORECASE)
_ROLLBACK_RE = re.compile(r'^--\s*rollback\s+(.*)$', re.IGNORECASE)
_COMMENT_RE = re.compile(r'^--\s*comment:\s*(.*)$', re.IGNORECASE)


class MigrationStep:
    """
    One ordered change to a tenant schema.

    Attributes:
        step_id (str): Identifier, unique within the changelog
        author (str): Author of the step
        upgrade (callable): Forward action, receives the tenant connection
        downgrade (callable | None): Reverse action, None if irreversible
        description (str): Human readable summary
        source (str): File or module the step was loaded from
        checksum (str): MD5 of the step body, stored in the ledger
    """

    def __init__(
        self,
        step_id: str,
        upgrade: StepAction,
        author: str = 'system',
        downgrade: Optional[StepAction] = None,
        description: str = '',
        source: str = '',
        body: Optional[str] = None
    ):
        self.step_id = step_id
        self.author = author
        self.upgrade = upgrade
        self.downgrade = downgrade
        self.description = description
        self.source = source
        if body is None:
            body = _describe_callable(upgrade)
        self.checksum = hashlib.md5(body.encode('utf-8')).hexdigest()

    @property
    def reversible(self) -> bool:
        return self.downgrade is not None

    def __repr__(self) -> str:
        return f"<MigrationStep {self.author}:{self.step_id}>"


class Changelog:
    """Ordered, duplicate-free sequence of MigrationStep objects."""

    def __init__(self, steps: Optional[List[MigrationStep]] = None, source: str = ''):
        self.source = source
        self._steps: List[MigrationStep] = []
        self._by_id: Dict[str, MigrationStep] = {}
        for step in steps or []:
            self.add(step)

    def add(self, step: MigrationStep) -> MigrationStep:
        if step.step_id in self._by_id:
            raise ChangelogError(f"Duplicate changeset id '{step.step_id}' in {step.source or self.source}")
        self._steps.append(step)
        self._by_id[step.step_id] = step
        return step

    def step(
        self,
        step_id: str,
        author: str = 'system',
        downgrade: Optional[StepAction] = None,
        description: Optional[str] = None
    ):
        """
        Decorator registering a migration step.

        The function docstring is used as description when none is given.
        """
        def decorator(func: StepAction) -> StepAction:
            self.add(MigrationStep(
                step_id=step_id,
                upgrade=func,
                author=author,
                downgrade=downgrade,
                description=description or (func.__doc__ or '').strip(),
                source=func.__module__
            ))
            return func
        return decorator

    def reverse(self, step_id: str):
        """Decorator attaching the reverse action of an already registered step."""
        def decorator(func: StepAction) -> StepAction:
            step = self.get(step_id)
            if step is None:
                raise ChangelogError(f"Cannot attach reverse action: unknown changeset '{step_id}'")
            step.downgrade = func
            return func
        return decorator

    def get(self, step_id: str) -> Optional[MigrationStep]:
        return self._by_id.get(step_id)

    def __iter__(self) -> Iterator[MigrationStep]:
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"<Changelog source='{self.source}' steps={len(self._steps)}>"


def load_changelog(locator: Union[str, Path, Changelog]) -> Changelog:
    """
    Load the changelog a locator points to.

    Args:
        locator: Changelog instance, SQL directory, SQL file or module path

    Returns:
        Changelog: The ordered steps

    Raises:
        ChangelogError: If the locator cannot be resolved or parsed
    """
    if isinstance(locator, Changelog):
        return locator

    if not locator:
        raise ChangelogError("No changelog locator configured")

    path = Path(locator)
    if path.is_dir():
        files = sorted(path.glob('*.sql'))
        if not files:
            raise ChangelogError(f"No .sql changelog files found in {path}")
        changelog = Changelog(source=str(path))
        for sql_file in files:
            for step in parse_sql_changelog(sql_file.read_text(encoding='utf-8'), source=sql_file.name):
                changelog.add(step)
    elif str(locator).endswith('.sql'):
        if not path.is_file():
            raise ChangelogError(f"Changelog file not found: {path}")
        changelog = Changelog(
            parse_sql_changelog(path.read_text(encoding='utf-8'), source=path.name),
            source=str(path)
        )
    else:
        changelog = _load_module_changelog(str(locator))

    logger.debug(f"Loaded changelog {changelog.source} with {len(changelog)} step(s)")
    return changelog


def parse_sql_changelog(content: str, source: str = '<string>') -> List[MigrationStep]:
    """
    Parse a formatted SQL changelog into migration steps.

    Args:
        content: File content
        source: Name used in error messages and stored in the ledger

    Returns:
        list[MigrationStep]: Steps in file order

    Raises:
        ChangelogError: On SQL outside a changeset, empty changesets or no changeset at all
    """
    steps: List[MigrationStep] = []
    current: Optional[dict] = None

    def close_current():
        if current is None:
            return
        if not current['forward']:
            raise ChangelogError(f"Changeset '{current['id']}' in {source} has no SQL")
        steps.append(_build_sql_step(current, source))

    for lineno, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()

        if not line or _HEADER_RE.match(line):
            continue

        changeset = _CHANGESET_RE.match(line)
        if changeset:
            close_current()
            current = {
                'author': changeset.group(1),
                'id': changeset.group(2),
                'description': '',
                'forward': [],
                'rollback': [],
            }
            continue

        if current is None:
            if line.startswith('--'):
                continue
            raise ChangelogError(f"{source}:{lineno}: SQL found before the first --changeset")

        rollback = _ROLLBACK_RE.match(line)
        if rollback:
            current['rollback'].append(rollback.group(1))
            continue

        comment = _COMMENT_RE.match(line)
        if comment:
            current['description'] = comment.group(1).strip()
            continue

        if line.startswith('--'):
            continue

        current['forward'].append(raw_line.rstrip())

    close_current()

    if not steps:
        raise ChangelogError(f"No changeset found in {source}")

    return steps


def split_statements(lines: List[str]) -> List[str]:
    """
    Split SQL lines into statements on ';' at end of line.

    A trailing statement without ';' is kept.
    """
    statements = []
    buffer: List[str] = []
    for line in lines:
        buffer.append(line)
        if line.rstrip().endswith(';'):
            statement = '\n'.join(buffer).strip().rstrip(';').strip()
            if statement:
                statements.append(statement)
            buffer = []
    tail = '\n'.join(buffer).strip()
    if tail:
        statements.append(tail)
    return statements


def _build_sql_step(changeset: dict, source: str) -> MigrationStep:
    forward = split_statements(changeset['forward'])
    reverse = split_statements(changeset['rollback'])
    if not forward:
        raise ChangelogError(f"Changeset '{changeset['id']}' in {source} has no SQL")

    def upgrade(conn: Connection):
        for statement in forward:
            conn.exec_driver_sql(statement)

    downgrade = None
    if reverse:
        def downgrade(conn: Connection):
            for statement in reverse:
                conn.exec_driver_sql(statement)

    return MigrationStep(
        step_id=changeset['id'],
        upgrade=upgrade,
        author=changeset['author'],
        downgrade=downgrade,
        description=changeset['description'] or forward[0].splitlines()[0][:200],
        source=source,
        body='\n'.join(forward)
    )


def _load_module_changelog(locator: str) -> Changelog:
    module_name, _, attribute = locator.partition(':')
    attribute = attribute or 'changelog'

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ChangelogError(f"Cannot import changelog module '{module_name}': {e}") from e

    changelog = getattr(module, attribute, None)
    if not isinstance(changelog, Changelog):
        raise ChangelogError(f"'{locator}' does not name a Changelog object")

    if not changelog.source:
        changelog.source = locator
    return changelog


def _describe_callable(func: Callable) -> str:
    try:
        return inspect.getsource(func)
    except (OSError, TypeError):
        return getattr(func, '__qualname__', repr(func))
