"""Runtime configuration for the NewsRAG services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict

# Placeholder values shipped in sample .env files; treated as "not configured".
_PLACEHOLDER_KEYS = {"your_jina_api_key_here", "your_gemini_api_key_here", "changeme"}


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="newsrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Embedding provider
    embedding_provider: Literal["jina", "huggingface", "hash"] = "jina"
    embedding_model: str = "jina-embeddings-v2-base-en"
    embedding_dim: int = 768
    embedding_api_key: str | None = None
    embedding_degrade: bool = True
    embedding_device: str | None = None
    embedding_max_chars: int = 8000

    # Generation provider
    generator_model: str = "gemini-1.5-flash"
    generator_api_key: str | None = None
    generator_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    generator_temperature: float = 0.7
    generator_top_k: int = 40
    generator_top_p: float = 0.95
    generator_max_output_tokens: int = 1024
    generator_timeout_seconds: float = 60.0
    history_window: int = 5

    # Vector index
    chroma_persist_dir: Path | None = Path("./.chroma")
    chroma_collection: str = "news_articles"
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False

    # Cache / sessions
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_password: str | None = None
    cache_max_entries: int = 10_000
    session_ttl_seconds: PositiveInt = 3600
    query_cache_ttl_seconds: PositiveInt = 1800

    # Retrieval
    retrieval_top_k: int = 5
    retrieval_score_floor: float = 0.7
    relevant_articles_limit: int = 10
    relevant_articles_floor: float = 0.6
    search_articles_limit: int = 20
    search_articles_floor: float = 0.5

    # Query validation
    query_min_length: int = 3
    query_max_length: int = 500

    # Ingestion
    ingestion_batch_size: int = 5
    ingestion_batch_pause_seconds: float = 1.0
    ingestion_min_title_length: int = 10
    ingestion_min_content_length: int = 50
    latest_articles_ttl_seconds: PositiveInt = 3600

    evaluation_min_recall: float = 0.5
    evaluation_min_mrr: float = 0.5

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def embedding_credential(self) -> str | None:
        return _usable_key(self.embedding_api_key)

    @property
    def generator_credential(self) -> str | None:
        return _usable_key(self.generator_api_key)


def _usable_key(value: str | None) -> str | None:
    if not value:
        return None
    stripped = value.strip()
    if not stripped or stripped in _PLACEHOLDER_KEYS:
        return None
    return stripped


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
