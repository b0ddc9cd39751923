"""Search service module providing orchestration across normalization, caching, retrieval and aggregation."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from .aggregate import aggregate
from .cache import InMemorySearchCache, NoOpSearchCache, SearchCache
from .cache_keys import build_key
from .config import Settings, settings as _default_settings
from .errors import EmbeddingGenerationError
from .logging_utils import clear_request_context, log_stage, new_request_id, set_request_context
from .models import MultimodalSearchResult, RetrievalMatch, SearchMetrics, SearchQuery, ValidationFailure
from .normalize import normalize_query
from .pool import WorkerPool
from .retriever import IMAGE_BRANCH, TEXT_BRANCH, ParallelRetriever, SimilarityIndex, call_collaborator
from .retry import RetryExecutor
from .stats import CACHE_HITS, CACHE_MISSES, EMBEDDING_ERRORS, SEARCHES, VALIDATION_ERRORS, SearchStats


logger = logging.getLogger("uvicorn.error")

INVALID_QUERY_MESSAGE = "invalid query"


class EmbeddingGenerator(Protocol):
    def embed(self, text: str) -> Any:
        ...


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_cache(config: Settings) -> SearchCache:
    """Cache backend for the in-memory deployment; Mongo caches are wired by the app."""
    if not config.cache_enabled:
        return NoOpSearchCache()
    return InMemorySearchCache(max_size=config.cache_max_size)


class MultimodalSearchService:
    """Answers a query from the text and image indexes, through the search cache."""

    def __init__(
        self,
        text_index: SimilarityIndex,
        image_index: SimilarityIndex,
        embedder: EmbeddingGenerator,
        cache: Optional[SearchCache] = None,
        config: Optional[Settings] = None,
        *,
        pool: Optional[WorkerPool] = None,
        embed_pool: Optional[WorkerPool] = None,
        retry: Optional[RetryExecutor] = None,
        stats: Optional[SearchStats] = None,
    ) -> None:
        self.config = config or _default_settings
        self.embedder = embedder
        self.cache = cache if cache is not None else build_cache(self.config)
        self.stats = stats or SearchStats(enabled=self.config.metrics_enabled)
        self.pool = pool or WorkerPool(self.config.parallel_search_threads)
        self.embed_pool = embed_pool or WorkerPool(self.config.embedding_threads, name="embedding-worker")
        self.retry = retry or RetryExecutor(self.config.max_retries, self.config.retry_delay_ms, stats=self.stats)
        self.retriever = ParallelRetriever(
            text_index,
            image_index,
            self.pool,
            self.retry,
            timeout_seconds=self.config.search_timeout_seconds,
            min_score=self.config.min_score,
            stats=self.stats,
        )
        self.config_version = self.config.config_version()
        logger.info(
            "Search service ready: pool=%d retries=%d timeout=%.1fs min_score=%.2f cache=%s version=%s",
            self.pool.max_workers,
            self.retry.max_retries,
            self.config.search_timeout_seconds,
            self.config.min_score,
            type(self.cache).__name__,
            self.config_version,
        )

    def cache_key_for(self, query: SearchQuery) -> str:
        return build_key(query.text, query.max_results, query.user_id, self.config.min_score, self.config_version)

    async def search(self, query: str, max_results: Optional[int] = None, user_id: Optional[str] = None) -> MultimodalSearchResult:
        """Run a cached multimodal search.

        Blank queries come back as an error result without touching the cache.
        Index failures and timeouts only thin out the answer; an embedding
        failure raises EmbeddingGenerationError.
        """
        self.stats.increment(SEARCHES)
        normalized = normalize_query(query, max_results, user_id, self.config)
        if isinstance(normalized, ValidationFailure):
            self.stats.increment(VALIDATION_ERRORS)
            logger.warning("Rejected search request: %s", normalized.reason)
            return MultimodalSearchResult.error(query or "", INVALID_QUERY_MESSAGE, timestamp=_now_ms())

        token = set_request_context(new_request_id(), normalized.text, normalized.max_results, verbose=self.config.verbose_logging)
        try:
            key = self.cache_key_for(normalized)
            cached = await self._cache_get(key)
            if cached is not None:
                self.stats.increment(CACHE_HITS)
                log_stage("cache_hit", list(cached.text_results) + list(cached.image_results), duration_ms=0.0)
                return cached.model_copy(update={"was_cached": True}, deep=True)
            self.stats.increment(CACHE_MISSES)

            result = await self._execute(normalized, key)
            await self._cache_put(key, result.model_copy(deep=True))
            return result
        finally:
            clear_request_context(token)

    async def _execute(self, query: SearchQuery, key: str) -> MultimodalSearchResult:
        start = time.perf_counter()
        vector = await self.embed(query.text)

        text_outcome, image_outcome = await self.retriever.retrieve(vector, query.max_results)
        text_items, text_metrics = aggregate(text_outcome, self.config.min_score)
        image_items, image_metrics = aggregate(image_outcome, self.config.min_score)
        log_stage(TEXT_BRANCH, text_items, duration_ms=text_metrics.duration_ms)
        log_stage(IMAGE_BRANCH, image_items, duration_ms=image_metrics.duration_ms)

        total_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "multimodal summary: text=%d (avg %.3f) images=%d (avg %.3f) total_ms=%d",
            text_metrics.result_count,
            text_metrics.average_score,
            image_metrics.result_count,
            image_metrics.average_score,
            total_ms,
        )
        return MultimodalSearchResult(
            query=query.text,
            text_results=text_items,
            image_results=image_items,
            text_metrics=text_metrics,
            image_metrics=image_metrics,
            total_duration_ms=total_ms,
            was_cached=False,
            cache_key=key,
            timestamp=_now_ms(),
        )

    async def embed(self, text: str) -> Sequence[float]:
        """Query vector for ``text``. Not retried: failure is fatal to the search.

        Runs on the embedding pool, apart from index lookups, and is bounded by
        ``embedding_timeout_seconds``.
        """
        timeout = self.config.embedding_timeout_seconds
        try:
            vector = await asyncio.wait_for(call_collaborator(self.embed_pool, self.embedder.embed, text), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self.stats.increment(EMBEDDING_ERRORS)
            raise EmbeddingGenerationError(f"embedding generation timed out after {timeout:.1f}s") from exc
        except EmbeddingGenerationError:
            self.stats.increment(EMBEDDING_ERRORS)
            raise
        except Exception as exc:
            self.stats.increment(EMBEDDING_ERRORS)
            raise EmbeddingGenerationError(f"embedding generation failed: {exc}") from exc
        if vector is None or len(vector) == 0:
            self.stats.increment(EMBEDDING_ERRORS)
            raise EmbeddingGenerationError("embedding generator returned an empty vector")
        return vector

    async def _cache_get(self, key: str) -> Optional[MultimodalSearchResult]:
        try:
            return await self.cache.get(key)
        except Exception as exc:
            logger.warning("Search cache lookup failed, treating as miss: %s", exc)
            return None

    async def _cache_put(self, key: str, result: MultimodalSearchResult) -> None:
        try:
            await self.cache.put(key, result, self.config.cache_ttl_seconds)
        except Exception as exc:
            logger.warning("Search cache store failed, result not cached: %s", exc)

    async def search_text(self, query: str, max_results: Optional[int] = None) -> Tuple[str, List[RetrievalMatch], SearchMetrics]:
        return await self._search_single(TEXT_BRANCH, query, max_results)

    async def search_images(self, query: str, max_results: Optional[int] = None) -> Tuple[str, List[RetrievalMatch], SearchMetrics]:
        return await self._search_single(IMAGE_BRANCH, query, max_results)

    async def _search_single(self, label: str, query: str, max_results: Optional[int]) -> Tuple[str, List[RetrievalMatch], SearchMetrics]:
        """Uncached lookup against one index; raises ValueError on a blank query."""
        normalized = normalize_query(query, max_results, None, self.config)
        if isinstance(normalized, ValidationFailure):
            self.stats.increment(VALIDATION_ERRORS)
            raise ValueError(normalized.reason)

        token = set_request_context(new_request_id(), normalized.text, normalized.max_results, verbose=self.config.verbose_logging)
        try:
            vector = await self.embed(normalized.text)
            index = self.retriever.text_index if label == TEXT_BRANCH else self.retriever.image_index
            outcome = await self.retriever.run_branch(label, index, vector, normalized.max_results)
            items, metrics = aggregate(outcome, self.config.min_score)
            log_stage(label, items, duration_ms=metrics.duration_ms)
            return normalized.text, items, metrics
        finally:
            clear_request_context(token)

    async def invalidate_all(self) -> None:
        """Drop every cached result, e.g. after new documents were indexed."""
        await self.cache.evict_all()
        logger.info("Search cache invalidated")

    async def invalidate_user(self, user_id: Optional[str]) -> None:
        # The cache interface has no scoped eviction; every user's entries go.
        logger.warning("Cache invalidation requested for user=%s; evicting all entries", user_id)
        await self.invalidate_all()

    def cache_stats(self) -> dict:
        return {**self.cache.stats(), "counters": self.stats.snapshot()}

    def shutdown(self) -> int:
        """Drain both pools; returns how many tasks were abandoned."""
        grace = self.config.shutdown_grace_seconds
        return self.pool.shutdown(grace) + self.embed_pool.shutdown(grace)

    async def aclose(self) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.shutdown)


__all__ = [
    "EmbeddingGenerator",
    "MultimodalSearchService",
    "build_cache",
    "INVALID_QUERY_MESSAGE",
]
