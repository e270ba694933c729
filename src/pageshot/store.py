# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Key-value store — the persistence seam for cache records and the sweep cursor.

Two implementations share ``KeyValueStore``:

- ``InMemoryKeyValueStore``: dict-backed, for tests and single-process dev.
- ``SqliteKeyValueStore``: ``aiosqlite`` with one long-lived connection,
  WAL journal mode, schema versioned via ``PRAGMA user_version``.

Listing is lexicographic by key.  The pagination cursor is the last key
returned by the previous page, so a page never repeats keys and keys
inserted behind the cursor wait for the next full sweep.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

_SCHEMA_VERSION = 1


@dataclass(frozen=True, slots=True)
class KeyListing:
    """One page of a prefix listing."""

    keys: list[str] = field(default_factory=list)
    list_complete: bool = True
    cursor: str | None = None


@runtime_checkable
class KeyValueStore(Protocol):
    """Async string key-value store with prefix listing."""

    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, *, prefix: str = "", limit: int = 1000, cursor: str | None = None) -> KeyListing: ...

    async def close(self) -> None: ...


def _page(sorted_keys: list[str], limit: int) -> KeyListing:
    """Build a listing from up to ``limit + 1`` sorted keys."""
    if len(sorted_keys) > limit:
        page = sorted_keys[:limit]
        return KeyListing(keys=page, list_complete=False, cursor=page[-1])
    return KeyListing(keys=sorted_keys, list_complete=True, cursor=None)


# ---------------------------------------------------------------------------
# InMemoryKeyValueStore
# ---------------------------------------------------------------------------


class InMemoryKeyValueStore:
    """Dict-backed store. Not shared across processes."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def put(self, key: str, value: str) -> None:
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list(self, *, prefix: str = "", limit: int = 1000, cursor: str | None = None) -> KeyListing:
        keys = sorted(k for k in self._data if k.startswith(prefix) and (cursor is None or k > cursor))
        return _page(keys[: limit + 1], limit)

    async def close(self) -> None:
        pass

    def snapshot(self) -> dict[str, str]:
        """Copy of the current contents (test helper)."""
        return dict(self._data)


# ---------------------------------------------------------------------------
# SqliteKeyValueStore
# ---------------------------------------------------------------------------

_CREATE_KV = """
CREATE TABLE IF NOT EXISTS kv (
    key        TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    updated_at REAL NOT NULL DEFAULT (julianday('now'))
)
"""


def _prefix_upper_bound(prefix: str) -> str | None:
    """Smallest string greater than every string starting with *prefix*."""
    if not prefix:
        return None
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)


class SqliteKeyValueStore:
    """SQLite-backed ``KeyValueStore``.

    Use the ``create()`` async classmethod factory.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    @classmethod
    async def create(cls, db_path: str | Path) -> SqliteKeyValueStore:
        """Open (or create) a SQLite database and initialise the schema.

        Resolves ``~`` and creates parent directories automatically.

        Raises:
            ValueError: If the existing database has a newer schema version.
        """
        path = Path(db_path).expanduser().resolve()
        path.parent.mkdir(parents=True, exist_ok=True)

        db = await aiosqlite.connect(str(path))
        try:
            await db.execute("PRAGMA journal_mode = WAL")

            cursor = await db.execute("PRAGMA user_version")
            row = await cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version > _SCHEMA_VERSION:
                raise ValueError(
                    f"Database schema version {current_version} is newer than supported version {_SCHEMA_VERSION}"
                )

            if current_version < _SCHEMA_VERSION:
                await db.execute(_CREATE_KV)
                await db.execute(f"PRAGMA user_version = {_SCHEMA_VERSION}")
                await db.commit()
        except BaseException:
            await db.close()
            raise

        return cls(db)

    async def get(self, key: str) -> str | None:
        cursor = await self._db.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row else None

    async def put(self, key: str, value: str) -> None:
        await self._db.execute(
            "INSERT INTO kv (key, value, updated_at) VALUES (?, ?, julianday('now')) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value),
        )
        await self._db.commit()

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM kv WHERE key = ?", (key,))
        await self._db.commit()

    async def list(self, *, prefix: str = "", limit: int = 1000, cursor: str | None = None) -> KeyListing:
        # Range scan on the primary key instead of LIKE so '%' and '_' in keys stay literal.
        clauses = ["key >= ?"]
        params: list = [prefix]
        upper = _prefix_upper_bound(prefix)
        if upper is not None:
            clauses.append("key < ?")
            params.append(upper)
        if cursor is not None:
            clauses.append("key > ?")
            params.append(cursor)
        params.append(limit + 1)
        rows = await self._db.execute_fetchall(
            f"SELECT key FROM kv WHERE {' AND '.join(clauses)} ORDER BY key LIMIT ?",
            params,
        )
        return _page([r[0] for r in rows], limit)

    async def close(self) -> None:
        """Close the database connection. Idempotent."""
        with suppress(Exception):
            await self._db.close()
