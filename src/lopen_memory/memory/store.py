"""SQLite store for the project hierarchy and research records."""

import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite

from lopen_memory.core.errors import StorageError
from lopen_memory.core.logging import get_logger
from lopen_memory.core.types import EntityKind

logger = get_logger("memory.store")

_NOW = "(strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))"
_STATES = "'Draft','Planning','Building','Complete','Amending'"

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS projects (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    name         TEXT    NOT NULL UNIQUE,
    path         TEXT    NOT NULL,
    description  TEXT    NOT NULL DEFAULT '',
    completed    INTEGER NOT NULL DEFAULT 0,
    updated_at   TEXT    NOT NULL DEFAULT {_NOW}
);

CREATE TABLE IF NOT EXISTS modules (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id     INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name           TEXT    NOT NULL,
    description    TEXT    NOT NULL DEFAULT '',
    details        TEXT    NOT NULL DEFAULT '',
    state          TEXT    NOT NULL DEFAULT 'Draft' CHECK(state IN ({_STATES})),
    last_worked_on TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(project_id, name)
);

CREATE TABLE IF NOT EXISTS features (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    module_id      INTEGER NOT NULL REFERENCES modules(id) ON DELETE CASCADE,
    name           TEXT    NOT NULL,
    description    TEXT    NOT NULL DEFAULT '',
    details        TEXT    NOT NULL DEFAULT '',
    state          TEXT    NOT NULL DEFAULT 'Draft' CHECK(state IN ({_STATES})),
    last_worked_on TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(module_id, name)
);

CREATE TABLE IF NOT EXISTS tasks (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    feature_id     INTEGER NOT NULL REFERENCES features(id) ON DELETE CASCADE,
    name           TEXT    NOT NULL,
    description    TEXT    NOT NULL DEFAULT '',
    details        TEXT    NOT NULL DEFAULT '',
    state          TEXT    NOT NULL DEFAULT 'Draft' CHECK(state IN ({_STATES})),
    last_worked_on TEXT    NOT NULL DEFAULT {_NOW},
    UNIQUE(feature_id, name)
);

CREATE TABLE IF NOT EXISTS research (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    name          TEXT    NOT NULL UNIQUE,
    description   TEXT    NOT NULL DEFAULT '',
    content       TEXT    NOT NULL DEFAULT '',
    source        TEXT    NOT NULL DEFAULT '',
    researched_at TEXT    NOT NULL DEFAULT {_NOW},
    created_at    TEXT    NOT NULL DEFAULT {_NOW},
    updated_at    TEXT    NOT NULL DEFAULT {_NOW}
);

-- Weak associations: rows vanish with either side, never the other side
CREATE TABLE IF NOT EXISTS research_projects (
    research_id  INTEGER NOT NULL REFERENCES research(id) ON DELETE CASCADE,
    project_id   INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    PRIMARY KEY (research_id, project_id)
);

CREATE TABLE IF NOT EXISTS research_modules (
    research_id  INTEGER NOT NULL REFERENCES research(id) ON DELETE CASCADE,
    module_id    INTEGER NOT NULL REFERENCES modules(id) ON DELETE CASCADE,
    PRIMARY KEY (research_id, module_id)
);

CREATE TABLE IF NOT EXISTS research_features (
    research_id  INTEGER NOT NULL REFERENCES research(id) ON DELETE CASCADE,
    feature_id   INTEGER NOT NULL REFERENCES features(id) ON DELETE CASCADE,
    PRIMARY KEY (research_id, feature_id)
);

CREATE TABLE IF NOT EXISTS research_tasks (
    research_id  INTEGER NOT NULL REFERENCES research(id) ON DELETE CASCADE,
    task_id      INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    PRIMARY KEY (research_id, task_id)
);

CREATE INDEX IF NOT EXISTS idx_modules_project ON modules(project_id);
CREATE INDEX IF NOT EXISTS idx_features_module ON features(module_id);
CREATE INDEX IF NOT EXISTS idx_tasks_feature ON tasks(feature_id);
"""


class SQLiteStore:
    """SQLite-backed store with cascading foreign keys.

    Statements run in autocommit mode unless wrapped in ``transaction()``.
    Every ``sqlite3.Error`` leaves this class as a ``StorageError``.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._in_transaction = False

    async def connect(self) -> None:
        """Open the database, enable WAL + foreign keys, create missing tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(e) from e
        try:
            self._conn = await aiosqlite.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = aiosqlite.Row
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA foreign_keys=ON")
            await self._conn.executescript(SCHEMA)
        except sqlite3.Error as e:
            await self.close()
            raise StorageError(e) from e
        logger.debug(f"Connected to store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "SQLiteStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Store not connected. Call connect() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Run the enclosed statements as one write transaction.

        Nested use joins the outer transaction.
        """
        if self._in_transaction:
            yield
            return
        await self.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield
        except BaseException:
            self._in_transaction = False
            if self.conn.in_transaction:
                await self.execute("ROLLBACK")
            raise
        self._in_transaction = False
        await self.execute("COMMIT")

    # Raw access

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Cursor:
        try:
            return await self.conn.execute(sql, tuple(params))
        except sqlite3.Error as e:
            logger.error(f"Statement failed: {e}", exc_info=True)
            raise StorageError(e) from e

    async def fetch_one(self, sql: str, params: Iterable[Any] = ()) -> dict[str, Any] | None:
        cursor = await self.execute(sql, params)
        try:
            row = await cursor.fetchone()
        except sqlite3.Error as e:
            raise StorageError(e) from e
        finally:
            await cursor.close()
        return dict(row) if row else None

    async def fetch_all(self, sql: str, params: Iterable[Any] = ()) -> list[dict[str, Any]]:
        cursor = await self.execute(sql, params)
        try:
            rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise StorageError(e) from e
        finally:
            await cursor.close()
        return [dict(row) for row in rows]

    async def scalar(self, sql: str, params: Iterable[Any] = ()) -> Any:
        row = await self.fetch_one(sql, params)
        return next(iter(row.values())) if row else None

    # Typed row CRUD

    async def get_row(self, kind: EntityKind, row_id: int) -> dict[str, Any] | None:
        return await self.fetch_one(f"SELECT * FROM {kind.table} WHERE id = ?", (row_id,))

    async def exists(self, kind: EntityKind, row_id: int) -> bool:
        count = await self.scalar(f"SELECT COUNT(*) FROM {kind.table} WHERE id = ?", (row_id,))
        return bool(count)

    async def find_ids(
        self, kind: EntityKind, name: str, scope_id: int | None = None
    ) -> list[int]:
        """Ids of rows whose name equals ``name``, optionally under one parent."""
        if scope_id is not None and kind.parent_column:
            rows = await self.fetch_all(
                f"SELECT id FROM {kind.table} WHERE name = ? AND {kind.parent_column} = ? ORDER BY id",
                (name, scope_id),
            )
        else:
            rows = await self.fetch_all(
                f"SELECT id FROM {kind.table} WHERE name = ? ORDER BY id", (name,)
            )
        return [row["id"] for row in rows]

    async def list_rows(
        self,
        kind: EntityKind,
        where: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        sql = f"SELECT * FROM {kind.table}"
        values: list[Any] = []
        if where:
            sql += " WHERE " + " AND ".join(f"{column} = ?" for column in where)
            values.extend(where.values())
        sql += " ORDER BY id"
        return await self.fetch_all(sql, values)

    async def insert(self, kind: EntityKind, values: dict[str, Any]) -> int:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cursor = await self.execute(
            f"INSERT INTO {kind.table} ({columns}) VALUES ({placeholders})",
            values.values(),
        )
        row_id = cursor.lastrowid
        await cursor.close()
        return row_id

    async def update(self, kind: EntityKind, row_id: int, values: dict[str, Any]) -> bool:
        """Update columns of one row; returns whether the row existed."""
        if not values:
            return False
        assignments = ", ".join(f"{column} = ?" for column in values)
        cursor = await self.execute(
            f"UPDATE {kind.table} SET {assignments} WHERE id = ?",
            [*values.values(), row_id],
        )
        changed = cursor.rowcount > 0
        await cursor.close()
        return changed

    async def delete(self, kind: EntityKind, row_id: int) -> bool:
        """Physical delete; foreign keys cascade to descendants and link rows."""
        cursor = await self.execute(f"DELETE FROM {kind.table} WHERE id = ?", (row_id,))
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def count_by_parent(self, kind: EntityKind, parent_id: int) -> int:
        """Number of ``kind`` rows owned by ``parent_id``."""
        if kind.parent_column is None:
            raise ValueError(f"{kind.value} has no parent")
        return await self.scalar(
            f"SELECT COUNT(*) FROM {kind.table} WHERE {kind.parent_column} = ?",
            (parent_id,),
        )

    # Research link rows

    async def link_exists(self, target: EntityKind, research_id: int, target_id: int) -> bool:
        count = await self.scalar(
            f"SELECT COUNT(*) FROM {target.link_table} "
            f"WHERE research_id = ? AND {target.link_column} = ?",
            (research_id, target_id),
        )
        return bool(count)

    async def insert_link(self, target: EntityKind, research_id: int, target_id: int) -> bool:
        """Insert a link row if absent; returns whether a row was written."""
        cursor = await self.execute(
            f"INSERT OR IGNORE INTO {target.link_table} (research_id, {target.link_column}) "
            "VALUES (?, ?)",
            (research_id, target_id),
        )
        inserted = cursor.rowcount > 0
        await cursor.close()
        return inserted

    async def delete_link(self, target: EntityKind, research_id: int, target_id: int) -> bool:
        """Delete a link row if present; returns whether a row was removed."""
        cursor = await self.execute(
            f"DELETE FROM {target.link_table} WHERE research_id = ? AND {target.link_column} = ?",
            (research_id, target_id),
        )
        deleted = cursor.rowcount > 0
        await cursor.close()
        return deleted

    async def count_links(self, target: EntityKind, research_id: int | None = None) -> int:
        if research_id is None:
            return await self.scalar(f"SELECT COUNT(*) FROM {target.link_table}")
        return await self.scalar(
            f"SELECT COUNT(*) FROM {target.link_table} WHERE research_id = ?", (research_id,)
        )
