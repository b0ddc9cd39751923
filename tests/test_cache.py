"""Tests for search cache backends."""

import datetime as dt
from unittest.mock import AsyncMock, MagicMock

import pytest

from multimodal_search.cache import InMemorySearchCache, MongoSearchCache, NoOpSearchCache
from multimodal_search.models import MultimodalSearchResult

from conftest import make_match


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def sample_result(query: str = "invoice payment terms") -> MultimodalSearchResult:
    return MultimodalSearchResult(query=query, text_results=[make_match(0.9)], timestamp=1)


class TestInMemorySearchCache:
    @pytest.mark.asyncio
    async def test_put_then_get(self) -> None:
        cache = InMemorySearchCache()
        await cache.put("k", sample_result(), 60)

        assert await cache.get("k") == sample_result()
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self) -> None:
        clock = FakeClock()
        cache = InMemorySearchCache(clock=clock)
        await cache.put("k", sample_result(), 60)

        clock.now += 59
        assert await cache.get("k") is not None
        clock.now += 1
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_is_evicted_when_full(self) -> None:
        cache = InMemorySearchCache(max_size=2)
        await cache.put("a", sample_result("a"), 60)
        await cache.put("b", sample_result("b"), 60)
        await cache.get("a")
        await cache.put("c", sample_result("c"), 60)

        assert await cache.get("b") is None
        assert await cache.get("a") is not None
        assert await cache.get("c") is not None
        assert cache.stats()["evictions"] == 1

    @pytest.mark.asyncio
    async def test_evict_all_and_stats(self) -> None:
        cache = InMemorySearchCache()
        await cache.put("k", sample_result(), 60)
        await cache.get("k")
        await cache.get("other")

        await cache.evict_all()

        stats = cache.stats()
        assert stats["size"] == 0
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


class TestNoOpSearchCache:
    @pytest.mark.asyncio
    async def test_never_stores(self) -> None:
        cache = NoOpSearchCache()
        await cache.put("k", sample_result(), 60)

        assert await cache.get("k") is None


class TestMongoSearchCache:
    NOW = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)

    def make_cache(self, collection) -> MongoSearchCache:
        return MongoSearchCache(collection, clock=lambda: self.NOW)

    @pytest.mark.asyncio
    async def test_put_upserts_with_expiry(self) -> None:
        collection = MagicMock()
        collection.replace_one = AsyncMock()

        await self.make_cache(collection).put("k", sample_result(), 300)

        args, kwargs = collection.replace_one.call_args
        assert args[0] == {"_id": "k"}
        assert args[1]["expires_at"] == self.NOW + dt.timedelta(seconds=300)
        assert args[1]["value"]["query"] == "invoice payment terms"
        assert kwargs == {"upsert": True}

    @pytest.mark.asyncio
    async def test_get_returns_live_entry(self) -> None:
        collection = MagicMock()
        collection.find_one = AsyncMock(
            return_value={
                "_id": "k",
                "value": sample_result().model_dump(mode="json"),
                "expires_at": self.NOW + dt.timedelta(seconds=5),
            }
        )

        assert await self.make_cache(collection).get("k") == sample_result()

    @pytest.mark.asyncio
    async def test_expired_entry_is_a_miss(self) -> None:
        collection = MagicMock()
        collection.find_one = AsyncMock(
            return_value={
                "_id": "k",
                "value": sample_result().model_dump(mode="json"),
                "expires_at": self.NOW - dt.timedelta(seconds=1),
            }
        )
        cache = self.make_cache(collection)

        assert await cache.get("k") is None
        assert cache.stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_evict_all_deletes_every_document(self) -> None:
        collection = MagicMock()
        collection.delete_many = AsyncMock(return_value=MagicMock(deleted_count=3))

        await self.make_cache(collection).evict_all()

        collection.delete_many.assert_awaited_once_with({})

    @pytest.mark.asyncio
    async def test_ensure_indexes_creates_ttl_index(self) -> None:
        collection = MagicMock()
        collection.create_index = AsyncMock()

        await self.make_cache(collection).ensure_indexes()

        collection.create_index.assert_awaited_once_with("expires_at", expireAfterSeconds=0)
