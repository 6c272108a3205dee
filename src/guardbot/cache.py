from __future__ import annotations

from dataclasses import dataclass

from guardbot.errors import PersistenceError
from guardbot.kvstore import KeyValueStore


@dataclass(slots=True)
class CacheResult:
    value: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LookupCache:
    """In-process map in front of the durable store.

    Durable failures never escape: they come back in ``CacheResult.error`` so
    the caller can fall through to the upstream source.
    """

    def __init__(self, kv: KeyValueStore, ttl_s: int) -> None:
        self._kv = kv
        self._ttl_s = ttl_s
        self._memory: dict[str, str] = {}

    async def get(self, key: str) -> CacheResult:
        if key in self._memory:
            return CacheResult(value=self._memory[key])
        try:
            value = await self._kv.get(key)
        except PersistenceError as exc:
            return CacheResult(error=str(exc))
        if value:
            self._memory[key] = value
        return CacheResult(value=value or None)

    async def set(self, key: str, value: str) -> CacheResult:
        self._memory[key] = value
        try:
            await self._kv.set(key, value, ttl_s=self._ttl_s)
        except PersistenceError as exc:
            return CacheResult(value=value, error=str(exc))
        return CacheResult(value=value)

    async def expire(self, key: str) -> CacheResult:
        self._memory.pop(key, None)
        try:
            await self._kv.delete(key)
        except PersistenceError as exc:
            return CacheResult(error=str(exc))
        return CacheResult()
