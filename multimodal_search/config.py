import hashlib
import json
import os
from pathlib import Path
from typing import Literal, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables or .env."""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Retrieval tuning
    min_score: float = Field(0.6, ge=0.0, le=1.0)
    default_max_results: int = Field(5, ge=1)
    max_allowed_results: int = Field(20, ge=1)
    search_timeout_seconds: float = Field(10.0, gt=0)
    max_query_length: int = Field(1000, ge=1)

    # Worker pool / retry
    parallel_search_threads: int = Field(default_factory=lambda: os.cpu_count() or 4, ge=1)
    max_retries: int = Field(3, ge=1)
    retry_delay_ms: int = Field(1000, ge=0)
    shutdown_grace_seconds: float = Field(5.0, ge=0)

    # Observability
    verbose_logging: bool = False
    metrics_enabled: bool = True

    # Search cache
    cache_enabled: bool = True
    cache_backend: Literal["memory", "mongo"] = "memory"
    cache_ttl_seconds: int = Field(300, ge=1)
    cache_max_size: int = Field(1000, ge=1)

    # MongoDB connection
    mongo_url: Optional[AnyUrl] = None
    db_name: str = "multimodal_rag"
    text_collection_name: str = "text_embeddings"
    image_collection_name: str = "image_embeddings"
    cache_collection_name: str = "search_cache"
    text_vector_index_name: str = "text_vector_index"
    image_vector_index_name: str = "image_vector_index"
    mongo_max_pool_size: int = 50
    mongo_server_selection_timeout_ms: int = 5000

    # Embedding settings
    embedding_api_base: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    embedding_auth_token: Optional[str] = None
    embedding_user_email: Optional[str] = None
    embedding_timeout_seconds: float = Field(30.0, gt=0)
    embedding_threads: int = Field(2, ge=1)

    def config_version(self) -> str:
        """Short hash of the tunables that shape a search result.

        Embedded in every cache key so a configuration change makes earlier
        entries unreachable without an explicit flush.
        """
        tunables = {
            "min_score": self.min_score,
            "default_max_results": self.default_max_results,
            "max_allowed_results": self.max_allowed_results,
            "search_timeout_seconds": self.search_timeout_seconds,
            "max_query_length": self.max_query_length,
        }
        payload = json.dumps(tunables, sort_keys=True)
        return "v" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:12]


settings = Settings()
