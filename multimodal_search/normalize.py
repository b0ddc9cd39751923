"""Utilities for normalizing query input and MongoDB records."""
from __future__ import annotations

import re
from typing import Any, Dict, Optional, Union

from bson import ObjectId

from .config import Settings, settings as _default_settings
from .models import SearchQuery, ValidationFailure

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query_text(text: Optional[str]) -> str:
    """Trim and collapse every whitespace run (tabs, newlines included) to one space."""
    if not text:
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def resolve_max_results(raw_max_results: Optional[int], config: Settings) -> int:
    upper = config.max_allowed_results
    if raw_max_results is None or raw_max_results <= 0:
        return min(config.default_max_results, upper)
    return min(raw_max_results, upper)


def normalize_query(
    raw_text: Optional[str],
    raw_max_results: Optional[int],
    user_id: Optional[str] = None,
    config: Optional[Settings] = None,
) -> Union[SearchQuery, ValidationFailure]:
    """Validate raw input into a SearchQuery.

    Blank text is reported as a ValidationFailure value rather than raised so the
    caller can turn it into an error result. Over-long text is truncated silently.
    """
    config = config or _default_settings
    text = normalize_query_text(raw_text)
    if not text:
        return ValidationFailure(reason="empty query")
    if len(text) > config.max_query_length:
        text = text[: config.max_query_length]
    return SearchQuery(
        text=text,
        max_results=resolve_max_results(raw_max_results, config),
        user_id=user_id,
    )


def sanitize_metadata(obj: Any) -> Any:
    """Recursively convert Mongo-specific types to JSON-safe forms while dropping embeddings."""
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for key, value in obj.items():
            if key == "embedding":
                continue
            out[key] = sanitize_metadata(value)
        return out
    if isinstance(obj, list):
        return [sanitize_metadata(item) for item in obj]
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj
    return str(obj)


__all__ = [
    "normalize_query_text",
    "resolve_max_results",
    "normalize_query",
    "sanitize_metadata",
]
