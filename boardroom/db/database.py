"""SQLite cache substrate via aiosqlite."""

from __future__ import annotations

import aiosqlite

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    payload TEXT NOT NULL,
    created_at REAL NOT NULL,
    expires_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cache_entries_expires_at ON cache_entries(expires_at);
"""


class Database:
    """Async SQLite store backing the advisory cache."""

    def __init__(self, path: str = "boardroom.db") -> None:
        self.path = path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        self._db = await aiosqlite.connect(self.path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not connected — call connect() first")
        return self._db

    # -- Cache entries --

    async def cache_get(self, key: str) -> dict | None:
        cursor = await self.db.execute(
            "SELECT key, payload, created_at, expires_at FROM cache_entries WHERE key = ?",
            (key,),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def cache_put(
        self, key: str, payload: str, created_at: float, expires_at: float
    ) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO cache_entries (key, payload, created_at, expires_at) "
            "VALUES (?, ?, ?, ?)",
            (key, payload, created_at, expires_at),
        )
        await self.db.commit()

    async def cache_delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await self.db.commit()

    async def cache_purge_expired(self, now: float) -> int:
        cursor = await self.db.execute(
            "DELETE FROM cache_entries WHERE expires_at <= ?", (now,)
        )
        await self.db.commit()
        return cursor.rowcount

    async def cache_clear_prefix(self, prefix: str) -> int:
        cursor = await self.db.execute(
            "DELETE FROM cache_entries WHERE key LIKE ? ESCAPE '\\'",
            (prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%",),
        )
        await self.db.commit()
        return cursor.rowcount
