"""Embedding retrieval and MongoDB Atlas vector search helpers."""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from motor.motor_asyncio import AsyncIOMotorCollection

from .config import Settings, settings as _default_settings
from .errors import EmbeddingGenerationError, IndexLookupError
from .models import RetrievalMatch
from .normalize import sanitize_metadata


logger = logging.getLogger("uvicorn.error")

_CONTENT_FIELDS = ("content", "text", "description", "summary")


class HttpEmbeddingGenerator:
    """Client for an OpenAI-compatible ``/embeddings`` endpoint.

    Every failure surfaces as EmbeddingGenerationError: without a vector there
    is nothing to search with, so callers treat it as fatal.
    """

    def __init__(self, config: Optional[Settings] = None, session: Optional[requests.Session] = None) -> None:
        self.config = config or _default_settings
        self.session = session or requests.Session()
        self._endpoint: Optional[Tuple[str, Dict[str, str]]] = None

    def _resolve_endpoint(self) -> Tuple[str, Dict[str, str]]:
        if self._endpoint is not None:
            return self._endpoint

        base = (self.config.embedding_api_base or "").strip()
        if not base:
            raise EmbeddingGenerationError("EMBEDDING_API_BASE is required")
        url = f"{base.rstrip('/')}/embeddings"

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.config.embedding_auth_token:
            headers["Authorization"] = f"Bearer {self.config.embedding_auth_token}"
        if self.config.embedding_user_email:
            headers.setdefault("X-User-Email", self.config.embedding_user_email)

        self._endpoint = (url, headers)
        return self._endpoint

    def embed(self, text: str) -> List[float]:
        if not text:
            raise EmbeddingGenerationError("cannot embed empty text")

        url, headers = self._resolve_endpoint()
        payload = {"input": text, "model": self.config.embedding_model}

        start = time.perf_counter()
        try:
            resp = self.session.post(url, headers=headers, json=payload, timeout=self.config.embedding_timeout_seconds)
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise EmbeddingGenerationError(f"embedding request to {url} failed: {exc}") from exc
        elapsed = (time.perf_counter() - start) * 1000

        embedding = _extract_embedding(body)
        if embedding is None:
            raise EmbeddingGenerationError(f"Unexpected embedding response format from {url}: {type(body)}")
        logger.debug("Embedding call ok url=%s ms=%.1f dims=%d", url, elapsed, len(embedding))
        return embedding


def _extract_embedding(body: Any) -> Optional[List[float]]:
    if isinstance(body, dict):
        data = body.get("data")
        if isinstance(data, list) and data and isinstance(data[0], dict):
            embedding = data[0].get("embedding")
            if isinstance(embedding, list):
                return [float(x) for x in embedding]
        if isinstance(body.get("embedding"), list):
            return [float(x) for x in body["embedding"]]
    if isinstance(body, list) and body and all(isinstance(x, (int, float)) for x in body):
        return [float(x) for x in body]
    return None


def document_to_match(doc: Dict[str, Any]) -> RetrievalMatch:
    root = doc.get("document", {}) or {}
    content = next((root[f] for f in _CONTENT_FIELDS if root.get(f)), "")
    metadata = {k: v for k, v in root.items() if k not in set(_CONTENT_FIELDS) | {"embedding"}}
    nested = metadata.pop("metadata", None)
    if isinstance(nested, dict):
        metadata = {**metadata, **nested}
    return RetrievalMatch(
        content=str(content),
        score=float(doc.get("score", 0.0) or 0.0),
        metadata=sanitize_metadata(metadata),
    )


class MongoVectorIndex:
    """Similarity index over one collection using the Atlas ``$vectorSearch`` operator."""

    def __init__(self, collection: AsyncIOMotorCollection, index_name: str, label: str, path: str = "embedding") -> None:
        self.collection = collection
        self.index_name = index_name
        self.label = label
        self.path = path

    def pipeline(self, vector: Sequence[float], k: int, min_score: float) -> List[Dict[str, Any]]:
        stage = {
            "$vectorSearch": {
                "index": self.index_name,
                "path": self.path,
                "queryVector": list(vector),
                "numCandidates": max(100, k * 10),
                "limit": k,
            }
        }
        return [
            stage,
            {"$project": {"score": {"$meta": "vectorSearchScore"}, "document": "$$ROOT"}},
            {"$match": {"score": {"$gte": min_score}}},
        ]

    async def find_relevant(self, vector: Sequence[float], k: int, min_score: float) -> List[RetrievalMatch]:
        if k <= 0:
            return []
        matches: List[RetrievalMatch] = []
        try:
            cursor = self.collection.aggregate(self.pipeline(vector, k, min_score))
            async for doc in cursor:
                matches.append(document_to_match(doc))
        except Exception as exc:
            logger.error("%s $vectorSearch failed: %s", self.label, exc)
            raise IndexLookupError(self.label, str(exc)) from exc
        logger.debug("%s vector search returned %d", self.label, len(matches))
        return matches


__all__ = [
    "HttpEmbeddingGenerator",
    "MongoVectorIndex",
    "document_to_match",
]
