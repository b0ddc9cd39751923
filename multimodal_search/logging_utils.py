"""Logging helpers and request context for structured stage instrumentation."""
from __future__ import annotations

import contextvars
import datetime as _dt
import json
import logging
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import RetrievalMatch

_logger = logging.getLogger("uvicorn.error")

_request_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("request_context", default={})

_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_PHONE_RE = re.compile(r"\b(?:\+?\d{1,3}[ -]?)?(?:\(\d{3}\)|\d{3})[ -]?\d{3}[ -]?\d{4}\b")

# Stages whose short result lists log at warning; the rest log at debug.
_UNDER_LIMIT_WARN_STAGES = frozenset({"text"})


def new_request_id() -> str:
    return str(uuid.uuid4())


def set_request_context(request_id: str, query: str, limit: int, *, verbose: bool = False) -> contextvars.Token:
    return _request_context.set({"request_id": request_id, "query": query, "limit": limit, "verbose": verbose})


def clear_request_context(token: Optional[contextvars.Token] = None) -> None:
    if token is not None:
        _request_context.reset(token)
    else:
        _request_context.set({})


def get_request_context() -> Dict[str, Any]:
    return _request_context.get() or {}


def _redact_query(query: str) -> Tuple[str, bool]:
    if not query:
        return "", False
    if _EMAIL_RE.search(query) or _PHONE_RE.search(query):
        truncated = (query[:50] + "…") if len(query) > 50 else query
        return f"[REDACTED] {truncated}", True
    if len(query) > 200:
        return query[:200] + "…", False
    return query, False


def _extract_top_info(matches: Iterable[RetrievalMatch], max_items: int = 10) -> Tuple[List[str], List[float]]:
    ids: List[str] = []
    scores: List[float] = []
    for match in matches:
        if len(ids) >= max_items:
            break
        metadata = match.metadata or {}
        ids.append(str(metadata.get("_id") or metadata.get("source") or metadata.get("imageName") or ""))
        scores.append(round(match.score, 4))
    return ids, scores


def log_stage(
    stage: str,
    matches: Iterable[RetrievalMatch],
    *,
    duration_ms: float | None = None,
    note: str | None = None,
) -> None:
    ctx = get_request_context()
    request_id = ctx.get("request_id") or new_request_id()
    query = ctx.get("query", "")
    limit = ctx.get("limit")
    verbose = bool(ctx.get("verbose"))

    display_query, redacted = _redact_query(query)
    matches_list = list(matches)
    count = len(matches_list)
    scores = [m.score for m in matches_list]

    entry: Dict[str, Any] = {
        "timestamp": _dt.datetime.now(_dt.timezone.utc).isoformat(timespec="milliseconds"),
        "request_id": request_id,
        "stage": stage,
        "query": display_query,
        "limit": limit,
        "count": count,
        "avg_score": round(sum(scores) / count, 4) if count else 0.0,
        "duration_ms": round(duration_ms, 2) if duration_ms is not None else None,
    }
    if verbose:
        top_ids, top_scores = _extract_top_info(matches_list)
        entry["top_ids"] = top_ids
        entry["top_scores"] = top_scores
    if note:
        entry["note"] = note
    if redacted:
        entry["redacted"] = True

    _logger.info("%s", json.dumps(entry, default=str))

    if verbose and limit is not None and count < limit:
        warn_entry = dict(entry)
        warn_entry.setdefault("note", "results < limit")
        level = logging.WARNING if stage in _UNDER_LIMIT_WARN_STAGES else logging.DEBUG
        _logger.log(level, "%s", json.dumps(warn_entry, default=str))


__all__ = [
    "new_request_id",
    "set_request_context",
    "clear_request_context",
    "get_request_context",
    "log_stage",
]
