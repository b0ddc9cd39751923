"""Exceptions raised by the retrieval core."""
from __future__ import annotations


class SearchError(Exception):
    """Base class for retrieval failures."""


class EmbeddingGenerationError(SearchError):
    """The query vector could not be produced; no retrieval is possible."""


class IndexLookupError(SearchError):
    """A single similarity-index lookup failed. Retried, never fatal."""

    def __init__(self, index: str, message: str) -> None:
        super().__init__(f"{index} index lookup failed: {message}")
        self.index = index


__all__ = ["SearchError", "EmbeddingGenerationError", "IndexLookupError"]
