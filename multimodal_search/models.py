from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class SearchQuery(BaseModel):
    """A validated, canonical query ready for embedding."""

    model_config = ConfigDict(frozen=True)

    text: str
    max_results: int = Field(..., ge=1)
    user_id: Optional[str] = None


class ValidationFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    reason: str


class RetrievalMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    score: float
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    result_count: int = 0
    average_score: float = 0.0
    max_score: float = 0.0
    min_score: float = 0.0
    duration_ms: int = 0

    @classmethod
    def empty(cls) -> "SearchMetrics":
        return cls()


class BranchOutcome(BaseModel):
    """Raw result of one index branch before aggregation."""

    model_config = ConfigDict(frozen=True)

    matches: List[RetrievalMatch] = Field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def empty(cls) -> "BranchOutcome":
        return cls()


class MultimodalSearchResult(BaseModel):
    """Combined text and image answer for one query; the unit stored in the search cache."""

    model_config = ConfigDict(frozen=True)

    query: str = ""
    text_results: Tuple[RetrievalMatch, ...] = ()
    image_results: Tuple[RetrievalMatch, ...] = ()
    text_metrics: SearchMetrics = Field(default_factory=SearchMetrics)
    image_metrics: SearchMetrics = Field(default_factory=SearchMetrics)
    total_duration_ms: int = 0
    was_cached: bool = False
    has_error: bool = False
    error_message: Optional[str] = None
    cache_key: Optional[str] = None
    timestamp: int = 0

    @property
    def total_results(self) -> int:
        return len(self.text_results) + len(self.image_results)

    @classmethod
    def error(cls, query: str, message: str, timestamp: int = 0) -> "MultimodalSearchResult":
        return cls(query=query, has_error=True, error_message=message, timestamp=timestamp)


class SearchRequest(BaseModel):
    query: str = Field(..., description="Search query text")
    max_results: Optional[int] = Field(None, description="Maximum number of results per index")
    user_id: Optional[str] = Field(None, description="Caller identifier, part of the cache key")


class InvalidateRequest(BaseModel):
    user_id: Optional[str] = None


class MatchListResponse(BaseModel):
    query: str
    results: List[RetrievalMatch]
    metrics: SearchMetrics
