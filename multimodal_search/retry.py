"""Bounded retry with exponential backoff and jitter around one index lookup."""
from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, List, Optional

from .models import RetrievalMatch
from .stats import RETRIES, RETRIES_EXHAUSTED, SearchStats

logger = logging.getLogger("uvicorn.error")

MAX_JITTER_MS = 200.0

SleepFn = Callable[[float], Awaitable[None]]
JitterFn = Callable[[float, float], float]


class RetryExecutor:
    """Runs an async lookup up to ``max_retries`` times in total.

    The delay before attempt n (n >= 2) is ``base_delay_ms * 2**(n - 2)`` plus a
    uniform jitter in [0, 200] ms. When every attempt fails the executor returns
    an empty list instead of raising.
    """

    def __init__(
        self,
        max_retries: int,
        base_delay_ms: int,
        *,
        sleep: SleepFn = asyncio.sleep,
        jitter: JitterFn = random.uniform,
        stats: Optional[SearchStats] = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self._sleep = sleep
        self._jitter = jitter
        self._stats = stats or SearchStats(enabled=False)

    def backoff_ms(self, attempt: int) -> float:
        """Delay preceding ``attempt`` (1-based); the first attempt has none."""
        if attempt < 2:
            return 0.0
        return self.base_delay_ms * (2 ** (attempt - 2)) + self._jitter(0.0, MAX_JITTER_MS)

    async def run(
        self,
        operation: Callable[[], Awaitable[List[RetrievalMatch]]],
        label: str = "index",
    ) -> List[RetrievalMatch]:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                delay_ms = self.backoff_ms(attempt)
                self._stats.increment(RETRIES)
                logger.debug("Retrying %s lookup (attempt %d/%d) in %.0f ms", label, attempt, self.max_retries, delay_ms)
                await self._sleep(delay_ms / 1000.0)
            try:
                return await operation()
            except Exception as exc:
                last_error = exc
                logger.warning("%s lookup attempt %d/%d failed: %s", label, attempt, self.max_retries, exc)

        self._stats.increment(RETRIES_EXHAUSTED)
        logger.error(
            "%s lookup failed after %d attempts, returning no matches: %s",
            label,
            self.max_retries,
            last_error,
        )
        return []


__all__ = ["RetryExecutor", "MAX_JITTER_MS"]
