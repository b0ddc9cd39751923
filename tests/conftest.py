"""
Shared test fixtures for the multimodal search suite.

Provides: deterministic settings, fake similarity indexes and embedders,
a search service wired to in-memory collaborators.
"""

import asyncio
import threading
import time
from typing import List, Optional

import pytest

from multimodal_search.cache import InMemorySearchCache
from multimodal_search.config import Settings
from multimodal_search.errors import IndexLookupError
from multimodal_search.models import RetrievalMatch
from multimodal_search.pool import WorkerPool
from multimodal_search.retry import RetryExecutor
from multimodal_search.search_service import MultimodalSearchService
from multimodal_search.stats import SearchStats


def make_match(score: float, content: Optional[str] = None, **metadata) -> RetrievalMatch:
    return RetrievalMatch(content=content or f"passage scoring {score}", score=score, metadata=metadata)


async def no_sleep(_seconds: float) -> None:
    return None


class FakeIndex:
    """Async similarity index returning canned matches, optionally failing first."""

    def __init__(self, matches: Optional[List[RetrievalMatch]] = None, fail_times: int = 0, delay: float = 0.0):
        self.matches = list(matches or [])
        self.fail_times = fail_times
        self.delay = delay
        self.calls = []

    async def find_relevant(self, vector, k, min_score):
        self.calls.append({"vector": list(vector), "k": k, "min_score": min_score})
        if self.fail_times > 0:
            self.fail_times -= 1
            raise IndexLookupError("fake", "transient outage")
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.matches)


class HangingIndex:
    """Async index that never answers; records whether it was cancelled."""

    def __init__(self):
        self.calls = 0
        self.cancelled = False

    async def find_relevant(self, vector, k, min_score):
        self.calls += 1
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return []


class BlockingIndex:
    """Synchronous index that blocks its worker thread until released."""

    def __init__(self):
        self.release = threading.Event()
        self.thread_names = []

    def find_relevant(self, vector, k, min_score):
        self.thread_names.append(threading.current_thread().name)
        self.release.wait(timeout=10)
        return []


class FakeEmbedder:
    """Synchronous embedder, so calls go through the embedding pool."""

    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None, delay: float = 0.0):
        self.vector = vector if vector is not None else [0.1, 0.2, 0.3]
        self.error = error
        self.delay = delay
        self.calls = []

    def embed(self, text):
        self.calls.append(text)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.vector)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        min_score=0.7,
        default_max_results=5,
        max_allowed_results=10,
        search_timeout_seconds=0.5,
        parallel_search_threads=4,
        max_retries=3,
        retry_delay_ms=0,
        max_query_length=50,
        cache_enabled=True,
        cache_ttl_seconds=60,
        cache_max_size=100,
        metrics_enabled=True,
        shutdown_grace_seconds=0.5,
    )


@pytest.fixture
def text_index() -> FakeIndex:
    return FakeIndex([make_match(0.92, "Payment is due within 30 days"), make_match(0.81, "Late fees apply")])


@pytest.fixture
def image_index() -> FakeIndex:
    return FakeIndex([make_match(0.77, "Scanned invoice header", imageName="page1.png")])


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def memory_cache() -> InMemorySearchCache:
    return InMemorySearchCache(max_size=100)


@pytest.fixture
def build_service(test_settings, embedder, memory_cache):
    """Factory for services over arbitrary indexes; pools are shut down afterwards."""
    created = []

    def _build(text, image, *, config: Optional[Settings] = None, cache=None, embedder_override=None):
        config = config or test_settings
        stats = SearchStats(enabled=config.metrics_enabled)
        service = MultimodalSearchService(
            text_index=text,
            image_index=image,
            embedder=embedder_override or embedder,
            cache=cache if cache is not None else memory_cache,
            config=config,
            pool=WorkerPool(config.parallel_search_threads),
            retry=RetryExecutor(
                config.max_retries,
                config.retry_delay_ms,
                sleep=no_sleep,
                jitter=lambda low, high: 0.0,
                stats=stats,
            ),
            stats=stats,
        )
        created.append(service)
        return service

    yield _build

    for service in created:
        service.pool.shutdown(0)
        service.embed_pool.shutdown(0)


@pytest.fixture
def search_service(build_service, text_index, image_index) -> MultimodalSearchService:
    return build_service(text_index, image_index)
