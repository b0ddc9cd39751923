"""Fixed-size worker pools for blocking index and embedding calls."""
from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import threading
from typing import Any, Callable, Set

logger = logging.getLogger("uvicorn.error")


class WorkerPool:
    """Thread pool for blocking collaborator calls.

    Python threads cannot be killed, so a forced shutdown cancels queued work and
    abandons whatever is still running; abandoned results are discarded.
    """

    def __init__(self, max_workers: int, name: str = "search-worker") -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        self.max_workers = max_workers
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=name)
        self._pending: Set[concurrent.futures.Future] = set()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> concurrent.futures.Future:
        with self._lock:
            if self._closed:
                raise RuntimeError("worker pool is shut down")
            future = self._executor.submit(fn, *args, **kwargs)
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    async def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking callable on the pool and await its result."""
        future = self.submit(functools.partial(fn, *args, **kwargs))
        return await asyncio.wrap_future(future)

    def _discard(self, future: concurrent.futures.Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def shutdown(self, grace_seconds: float) -> int:
        """Drain for up to ``grace_seconds``, then cancel the rest.

        Returns the number of tasks abandoned.
        """
        with self._lock:
            self._closed = True
            pending = set(self._pending)

        not_done: Set[concurrent.futures.Future] = set()
        if pending:
            logger.info("Draining %d search task(s), grace period %.1fs", len(pending), grace_seconds)
            _, not_done = concurrent.futures.wait(pending, timeout=grace_seconds)

        self._executor.shutdown(wait=False, cancel_futures=True)
        if not_done:
            logger.warning("Worker pool shutdown abandoned %d task(s) after %.1fs grace period", len(not_done), grace_seconds)
        else:
            logger.info("Worker pool shut down cleanly")
        return len(not_done)


__all__ = ["WorkerPool"]
