"""Concurrent text/image index lookups with per-branch timeouts."""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from .models import BranchOutcome, RetrievalMatch
from .pool import WorkerPool
from .retry import RetryExecutor
from .stats import BRANCH_FAILURES, BRANCH_TIMEOUTS, SearchStats

logger = logging.getLogger("uvicorn.error")

TEXT_BRANCH = "text"
IMAGE_BRANCH = "image"


class SimilarityIndex(Protocol):
    """Top-k lookup over previously embedded items.

    ``find_relevant`` may be a plain function (run on the worker pool) or a
    coroutine function (awaited directly, and cancelled on timeout).
    """

    def find_relevant(self, vector: Sequence[float], k: int, min_score: float) -> Any:
        ...


async def call_collaborator(pool: WorkerPool, fn: Any, *args: Any) -> Any:
    """Await ``fn(*args)`` if it is a coroutine function, otherwise run it on the pool."""
    if inspect.iscoroutinefunction(fn):
        return await fn(*args)
    return await pool.run(fn, *args)


class ParallelRetriever:
    def __init__(
        self,
        text_index: SimilarityIndex,
        image_index: SimilarityIndex,
        pool: WorkerPool,
        retry: RetryExecutor,
        *,
        timeout_seconds: float,
        min_score: float,
        stats: Optional[SearchStats] = None,
    ) -> None:
        self.text_index = text_index
        self.image_index = image_index
        self.pool = pool
        self.retry = retry
        self.timeout_seconds = timeout_seconds
        self.min_score = min_score
        self._stats = stats or SearchStats(enabled=False)

    async def retrieve(self, query_vector: Sequence[float], max_results: int) -> Tuple[BranchOutcome, BranchOutcome]:
        """Search both indexes concurrently and join the two outcomes.

        Neither branch can fail the call: a timeout or error in one yields an
        empty outcome for that branch while the other is still awaited.
        """
        text_task = asyncio.create_task(self.run_branch(TEXT_BRANCH, self.text_index, query_vector, max_results))
        image_task = asyncio.create_task(self.run_branch(IMAGE_BRANCH, self.image_index, query_vector, max_results))
        text_outcome, image_outcome = await asyncio.gather(text_task, image_task)
        return text_outcome, image_outcome

    async def run_branch(
        self,
        label: str,
        index: SimilarityIndex,
        query_vector: Sequence[float],
        max_results: int,
    ) -> BranchOutcome:
        start = time.perf_counter()

        async def _lookup() -> List[RetrievalMatch]:
            matches = await call_collaborator(self.pool, index.find_relevant, query_vector, max_results, self.min_score)
            return list(matches or [])

        try:
            matches = await asyncio.wait_for(self.retry.run(_lookup, label=label), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self._stats.increment(BRANCH_TIMEOUTS)
            logger.warning("%s search timed out after %.2fs, continuing without it", label, self.timeout_seconds)
            return BranchOutcome.empty()
        except Exception as exc:
            self._stats.increment(BRANCH_FAILURES)
            logger.warning("%s search failed, continuing without it: %s", label, exc)
            return BranchOutcome.empty()

        duration_ms = int((time.perf_counter() - start) * 1000)
        return BranchOutcome(matches=matches, duration_ms=duration_ms)


__all__ = ["SimilarityIndex", "ParallelRetriever", "call_collaborator", "TEXT_BRANCH", "IMAGE_BRANCH"]
