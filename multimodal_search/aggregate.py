"""Score filtering and per-branch quality metrics."""
from __future__ import annotations

from typing import List, Sequence, Tuple

from .models import BranchOutcome, RetrievalMatch, SearchMetrics


def filter_matches(matches: Sequence[RetrievalMatch], min_score: float) -> List[RetrievalMatch]:
    # Indexes are expected to apply min_score themselves; re-check anyway.
    return [m for m in matches if m.score >= min_score]


def compute_metrics(matches: Sequence[RetrievalMatch], duration_ms: int) -> SearchMetrics:
    if not matches:
        return SearchMetrics(duration_ms=duration_ms)
    scores = [m.score for m in matches]
    return SearchMetrics(
        result_count=len(scores),
        average_score=sum(scores) / len(scores),
        max_score=max(scores),
        min_score=min(scores),
        duration_ms=duration_ms,
    )


def aggregate(outcome: BranchOutcome, min_score: float) -> Tuple[List[RetrievalMatch], SearchMetrics]:
    items = filter_matches(outcome.matches, min_score)
    return items, compute_metrics(items, outcome.duration_ms)


__all__ = ["filter_matches", "compute_metrics", "aggregate"]
