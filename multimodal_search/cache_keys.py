"""Deterministic, versioned cache keys for multimodal search results."""
from __future__ import annotations

import hashlib
import re
from typing import Optional

KEY_PREFIX = "mmsearch"
ANONYMOUS_USER = "anonymous"

_WHITESPACE_RE = re.compile(r"\s+")


def _canonical_query(text: Optional[str]) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def query_hash(text: Optional[str]) -> str:
    return hashlib.sha256(_canonical_query(text).encode("utf-8")).hexdigest()


def build_key(
    normalized_query: str,
    max_results: int,
    user_id: Optional[str],
    min_score: float,
    config_version: str,
) -> str:
    """Compose ``prefix:version:query-hash:max-results:user:min-score``.

    The raw query never appears in the key; only its SHA-256 digest does.
    """
    user = (user_id or "").strip() or ANONYMOUS_USER
    return ":".join(
        [
            KEY_PREFIX,
            config_version,
            query_hash(normalized_query),
            str(max_results),
            user,
            f"{min_score:.3f}",
        ]
    )


__all__ = ["ANONYMOUS_USER", "KEY_PREFIX", "build_key", "query_hash"]
