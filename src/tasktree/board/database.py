"""SQLite database layer with async access via aiosqlite."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT NOT NULL,
    created_at   TEXT NOT NULL,
    archived_at  TEXT
);

CREATE TABLE IF NOT EXISTS task_groups (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id    INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    order_column  INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS users (
    id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name   TEXT NOT NULL,
    email  TEXT UNIQUE
);

CREATE TABLE IF NOT EXISTS labels (
    id     INTEGER PRIMARY KEY AUTOINCREMENT,
    name   TEXT NOT NULL,
    color  TEXT
);

CREATE TABLE IF NOT EXISTS tasks (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id           INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    group_id             INTEGER NOT NULL REFERENCES task_groups(id),
    parent_id            INTEGER REFERENCES tasks(id) ON DELETE SET NULL,
    number               INTEGER NOT NULL,
    name                 TEXT NOT NULL,
    description          TEXT,
    assigned_to_user_id  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    due_on               TEXT,
    estimation           REAL,
    pricing_type         TEXT NOT NULL DEFAULT 'hourly',
    fixed_price          INTEGER,
    priority             TEXT,
    complexity           TEXT,
    hidden_from_clients  INTEGER NOT NULL DEFAULT 0,
    billable             INTEGER NOT NULL DEFAULT 1,
    order_column         INTEGER NOT NULL DEFAULT 0,
    completed_at         TEXT,
    archived_at          TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT,
    CHECK (parent_id IS NULL OR parent_id != id)
);

CREATE TABLE IF NOT EXISTS task_labels (
    task_id   INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    label_id  INTEGER NOT NULL REFERENCES labels(id) ON DELETE CASCADE,
    PRIMARY KEY (task_id, label_id)
);

CREATE TABLE IF NOT EXISTS task_subscribers (
    task_id  INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    user_id  INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    PRIMARY KEY (task_id, user_id)
);

CREATE TABLE IF NOT EXISTS sub_tasks (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id              INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    parent_id            INTEGER REFERENCES sub_tasks(id) ON DELETE CASCADE,
    assigned_to_user_id  INTEGER REFERENCES users(id) ON DELETE SET NULL,
    name                 TEXT NOT NULL,
    description          TEXT,
    due_on               TEXT,
    estimation           REAL,
    priority             TEXT,
    complexity           TEXT,
    order_column         INTEGER NOT NULL DEFAULT 0,
    completed_at         TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT,
    CHECK (parent_id IS NULL OR parent_id != id)
);

CREATE TABLE IF NOT EXISTS task_audits (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id     INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    event       TEXT NOT NULL,
    old_values  TEXT,
    new_values  TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_notes (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id  INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    user_id     INTEGER REFERENCES users(id) ON DELETE SET NULL,
    content     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    updated_at  TEXT,
    deleted_at  TEXT
);

CREATE TABLE IF NOT EXISTS note_audits (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    note_id     INTEGER NOT NULL REFERENCES project_notes(id) ON DELETE CASCADE,
    event       TEXT NOT NULL,
    old_values  TEXT,
    new_values  TEXT,
    created_at  TEXT NOT NULL
);
"""

_INDEX_SQL = """
CREATE INDEX IF NOT EXISTS idx_tasks_project_group
    ON tasks(project_id, group_id, order_column);

CREATE INDEX IF NOT EXISTS idx_tasks_parent
    ON tasks(parent_id);

CREATE INDEX IF NOT EXISTS idx_sub_tasks_task
    ON sub_tasks(task_id, order_column);

CREATE INDEX IF NOT EXISTS idx_sub_tasks_parent
    ON sub_tasks(parent_id);

CREATE INDEX IF NOT EXISTS idx_task_audits_task
    ON task_audits(task_id, created_at);

CREATE INDEX IF NOT EXISTS idx_project_notes_project
    ON project_notes(project_id, created_at);

CREATE INDEX IF NOT EXISTS idx_note_audits_note
    ON note_audits(note_id, created_at);
"""


class Database:
    """Async SQLite database wrapper using aiosqlite.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Use ``":memory:"`` for tests.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._tx_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _create_connection(self) -> aiosqlite.Connection:
        # isolation_level=None enables autocommit mode; multi-statement
        # writes go through transaction().
        conn = await aiosqlite.connect(self.db_path, isolation_level=None)
        conn.row_factory = aiosqlite.Row
        if self.db_path != ":memory:":
            await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA busy_timeout = 5000")
        await conn.execute("PRAGMA foreign_keys=ON")
        return conn

    async def initialize(self) -> None:
        """Open the connection, enable foreign keys and create the schema."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await self._create_connection()
        await self._conn.executescript(_SCHEMA_SQL)
        await self._conn.executescript(_INDEX_SQL)
        await self._conn.commit()
        logger.debug("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    # ------------------------------------------------------------------
    # Transaction support
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def transaction(self):
        """Async context manager for multi-statement transactions.

        Uses an asyncio lock to prevent concurrent coroutines from
        attempting nested BEGIN on the shared connection.
        """
        conn = self._require_conn()
        async with self._tx_lock:
            await conn.execute("BEGIN")
            try:
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Generic query helpers
    # ------------------------------------------------------------------

    async def execute_fetchall(
        self, sql: str, params: tuple = ()
    ) -> list[dict]:
        """Execute a query and return all rows as dicts."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        if not rows:
            return []
        keys = [desc[0] for desc in cursor.description]
        return [dict(zip(keys, row)) for row in rows]

    async def execute_fetchone(
        self, sql: str, params: tuple = ()
    ) -> dict | None:
        """Execute a query and return the first row as a dict, or None."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        if row is None:
            return None
        keys = [desc[0] for desc in cursor.description]
        return dict(zip(keys, row))

    async def execute(self, sql: str, params: tuple = ()) -> int:
        """Execute a statement, commit, and return the affected row count."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor.rowcount

    async def execute_insert(self, sql: str, params: tuple = ()) -> int:
        """Execute an INSERT, commit, and return the new row id."""
        conn = self._require_conn()
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor.lastrowid

