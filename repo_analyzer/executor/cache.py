"""Key/value cache with per-entry TTL.

Two implementations of the same async interface:
- InMemoryCache: process-local dict of TTL entries
- SqlCache: JSON values in the analysis_cache table, survives restarts

Values must be JSON-serializable (results are stored as model_dump(mode="json")).
"""

import asyncio
import copy
import logging
import time
from typing import Any, Optional, Protocol, runtime_checkable

from repo_analyzer.executor.db import Database, _json_dumps, _json_loads

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 3600


@runtime_checkable
class Cache(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_CACHE_TTL) -> None: ...

    async def delete(self, key: str) -> None: ...


class _CacheEntry:
    """In-memory cache entry with TTL."""

    __slots__ = ("data", "created_at", "ttl")

    def __init__(self, data: Any, ttl: int = DEFAULT_CACHE_TTL):
        self.data = data
        self.created_at = time.time()
        self.ttl = ttl

    @property
    def expired(self) -> bool:
        return time.time() - self.created_at > self.ttl


class InMemoryCache:
    """Dict-backed cache. Expired entries are dropped on read."""

    def __init__(self):
        self._entries: dict[str, _CacheEntry] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expired:
            del self._entries[key]
            return None
        return copy.deepcopy(entry.data)

    async def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_CACHE_TTL) -> None:
        self._entries[key] = _CacheEntry(copy.deepcopy(value), ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        expired = [k for k, entry in self._entries.items() if entry.expired]
        for key in expired:
            del self._entries[key]
        return len(expired)


class SqlCache:
    """Cache persisted in the analysis_cache table."""

    def __init__(self, db: Database):
        self._db = db

    async def get(self, key: str) -> Optional[Any]:
        row = await asyncio.to_thread(
            self._db.execute,
            "SELECT value, expires_at FROM analysis_cache WHERE cache_key = %s",
            (key,),
            "one",
        )
        if row is None:
            return None
        if row["expires_at"] < time.time():
            await self.delete(key)
            return None
        return _json_loads(row["value"])

    async def set(self, key: str, value: Any, ttl_seconds: int = DEFAULT_CACHE_TTL) -> None:
        await asyncio.to_thread(
            self._db.execute,
            """INSERT INTO analysis_cache (cache_key, value, expires_at)
               VALUES (%s, %s, %s)
               ON CONFLICT (cache_key) DO UPDATE
               SET value = excluded.value, expires_at = excluded.expires_at""",
            (key, _json_dumps(value), time.time() + ttl_seconds),
        )

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(
            self._db.execute,
            "DELETE FROM analysis_cache WHERE cache_key = %s",
            (key,),
        )
