"""Search cache backends: in-memory TTL, MongoDB, and a disabled no-op."""
from __future__ import annotations

import datetime as _dt
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from motor.motor_asyncio import AsyncIOMotorCollection

from .models import MultimodalSearchResult

logger = logging.getLogger("uvicorn.error")


class SearchCache(Protocol):
    async def get(self, key: str) -> Optional[MultimodalSearchResult]:
        ...

    async def put(self, key: str, value: MultimodalSearchResult, ttl_seconds: int) -> None:
        ...

    async def evict_all(self) -> None:
        ...

    def stats(self) -> Dict[str, Any]:
        ...


class NoOpSearchCache:
    """Used when caching is disabled: every lookup misses, nothing is stored."""

    async def get(self, key: str) -> Optional[MultimodalSearchResult]:
        return None

    async def put(self, key: str, value: MultimodalSearchResult, ttl_seconds: int) -> None:
        return None

    async def evict_all(self) -> None:
        return None

    def stats(self) -> Dict[str, Any]:
        return {"backend": "disabled"}


class InMemorySearchCache:
    """Bounded TTL cache; the least recently used entry goes first when full."""

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.monotonic) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, MultimodalSearchResult]]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def get(self, key: str) -> Optional[MultimodalSearchResult]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            expires_at, value = entry
            if expires_at <= now:
                del self._entries[key]
                self._misses += 1
                return None
            self._entries.move_to_end(key)
            self._hits += 1
            return value

    async def put(self, key: str, value: MultimodalSearchResult, ttl_seconds: int) -> None:
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            self._entries[key] = (expires_at, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                self._evictions += 1

    async def evict_all(self) -> None:
        with self._lock:
            removed = len(self._entries)
            self._entries.clear()
        logger.info("Search cache cleared (%d entries)", removed)

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "memory",
                "size": len(self._entries),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }


class MongoSearchCache:
    """Results stored as documents keyed by cache key.

    ``expires_at`` carries a TTL index so MongoDB purges old entries; entries past
    their expiry are treated as misses until the TTL monitor gets to them.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        clock: Callable[[], _dt.datetime] = lambda: _dt.datetime.now(_dt.timezone.utc),
    ) -> None:
        self.collection = collection
        self._clock = clock
        self._hits = 0
        self._misses = 0

    async def ensure_indexes(self) -> None:
        await self.collection.create_index("expires_at", expireAfterSeconds=0)

    async def get(self, key: str) -> Optional[MultimodalSearchResult]:
        doc = await self.collection.find_one({"_id": key})
        if not doc:
            self._misses += 1
            return None
        expires_at = doc.get("expires_at")
        if isinstance(expires_at, _dt.datetime):
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=_dt.timezone.utc)
            if expires_at <= self._clock():
                self._misses += 1
                return None
        self._hits += 1
        return MultimodalSearchResult.model_validate(doc["value"])

    async def put(self, key: str, value: MultimodalSearchResult, ttl_seconds: int) -> None:
        expires_at = self._clock() + _dt.timedelta(seconds=ttl_seconds)
        await self.collection.replace_one(
            {"_id": key},
            {"_id": key, "value": value.model_dump(mode="json"), "expires_at": expires_at},
            upsert=True,
        )

    async def evict_all(self) -> None:
        result = await self.collection.delete_many({})
        logger.info("Search cache cleared (%d entries)", result.deleted_count)

    def stats(self) -> Dict[str, Any]:
        return {"backend": "mongo", "hits": self._hits, "misses": self._misses}


__all__ = ["SearchCache", "NoOpSearchCache", "InMemorySearchCache", "MongoSearchCache"]
