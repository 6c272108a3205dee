from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from guardbot.errors import PersistenceError


def _now_ts() -> float:
    return datetime.now(UTC).timestamp()


def resolve_range(start: int, end: int, length: int) -> tuple[int, int] | None:
    """Turn an inclusive Redis-style index range into ``(offset, limit)``.

    Negative indices count from the tail. Returns ``None`` for an empty range.
    """
    if start < 0:
        start = max(start + length, 0)
    if end < 0:
        end += length
    end = min(end, length - 1)
    if start > end or start >= length:
        return None
    return start, end - start + 1


class KeyValueStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    @asynccontextmanager
    async def _connect(self, operation: str, key: str) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                yield db
        except aiosqlite.Error as exc:
            raise PersistenceError(f"{operation} {key!r} failed: {exc}") from exc

    async def init(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect("init", str(self._db_path)) as db:
            await db.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL
                );

                CREATE TABLE IF NOT EXISTS kv_lists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_kv_lists_key
                ON kv_lists(key, id);
                """
            )
            await db.commit()

    async def get(self, key: str) -> str | None:
        async with self._connect("GET", key) as db:
            cursor = await db.execute(
                "SELECT value, expires_at FROM kv_entries WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None
            value, expires_at = row
            if expires_at is not None and expires_at <= _now_ts():
                await db.execute("DELETE FROM kv_entries WHERE key = ?", (key,))
                await db.commit()
                return None
            return str(value)

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> None:
        expires_at = _now_ts() + ttl_s if ttl_s else None
        async with self._connect("SET", key) as db:
            await db.execute(
                """
                INSERT INTO kv_entries (key, value, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at
                """,
                (key, value, expires_at),
            )
            await db.commit()

    async def delete(self, *keys: str) -> None:
        if not keys:
            return
        placeholders = ", ".join("?" for _ in keys)
        async with self._connect("DELETE", keys[0]) as db:
            await db.execute(f"DELETE FROM kv_entries WHERE key IN ({placeholders})", keys)
            await db.execute(f"DELETE FROM kv_lists WHERE key IN ({placeholders})", keys)
            await db.commit()

    async def list_prepend(self, key: str, value: str) -> None:
        async with self._connect("LPUSH", key) as db:
            await db.execute("INSERT INTO kv_lists (key, value) VALUES (?, ?)", (key, value))
            await db.commit()

    async def list_length(self, key: str) -> int:
        async with self._connect("LLEN", key) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM kv_lists WHERE key = ?", (key,))
            row = await cursor.fetchone()
            return int(row[0]) if row else 0

    async def list_range(self, key: str, start: int, end: int) -> list[str]:
        length = await self.list_length(key)
        window = resolve_range(start, end, length)
        if window is None:
            return []
        offset, limit = window
        async with self._connect("LRANGE", key) as db:
            cursor = await db.execute(
                """
                SELECT value FROM kv_lists
                WHERE key = ?
                ORDER BY id DESC
                LIMIT ? OFFSET ?
                """,
                (key, limit, offset),
            )
            rows = await cursor.fetchall()
        return [str(row[0]) for row in rows]

    async def list_trim(self, key: str, start: int, end: int) -> None:
        length = await self.list_length(key)
        window = resolve_range(start, end, length)
        async with self._connect("LTRIM", key) as db:
            if window is None:
                await db.execute("DELETE FROM kv_lists WHERE key = ?", (key,))
            else:
                offset, limit = window
                await db.execute(
                    """
                    DELETE FROM kv_lists
                    WHERE key = ? AND id NOT IN (
                        SELECT id FROM kv_lists
                        WHERE key = ?
                        ORDER BY id DESC
                        LIMIT ? OFFSET ?
                    )
                    """,
                    (key, key, limit, offset),
                )
            await db.commit()
