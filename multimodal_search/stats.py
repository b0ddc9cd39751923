"""In-process counters for search and cache activity."""
from __future__ import annotations

import threading
from collections import Counter
from typing import Dict

SEARCHES = "searches"
CACHE_HITS = "cache_hits"
CACHE_MISSES = "cache_misses"
VALIDATION_ERRORS = "validation_errors"
EMBEDDING_ERRORS = "embedding_errors"
BRANCH_TIMEOUTS = "branch_timeouts"
BRANCH_FAILURES = "branch_failures"
RETRIES = "retries"
RETRIES_EXHAUSTED = "retries_exhausted"


class SearchStats:
    """Thread-safe counters. A disabled instance records nothing."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._counts: Counter = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1) -> None:
        if not self.enabled:
            return
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def reset(self) -> None:
        with self._lock:
            self._counts.clear()
