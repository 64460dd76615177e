"""Embedding gateway."""

from .service import (
    Embedding,
    EmbeddingConfig,
    EmbeddingGateway,
    HashEmbeddingBackend,
    ProviderEmbeddingBackend,
    build_embedding_gateway,
)

__all__ = [
    "Embedding",
    "EmbeddingConfig",
    "EmbeddingGateway",
    "HashEmbeddingBackend",
    "ProviderEmbeddingBackend",
    "build_embedding_gateway",
]
