"""Typed errors raised across the NewsRAG pipeline.

Every error carries a stable ``kind`` string so transport layers can map
failures without matching on class names.
"""

from __future__ import annotations


class NewsRagError(RuntimeError):
    """Base class for all pipeline errors."""

    kind = "error"


class ConfigurationDegraded(NewsRagError):
    """Raised when a provider credential is missing and a fallback must be used."""

    kind = "configuration_degraded"


class ProviderError(NewsRagError):
    """Raised when an external embedding or generation provider fails."""

    kind = "provider_error"


class EmbeddingFailed(ProviderError):
    kind = "embedding_failed"


class GenerationFailed(ProviderError):
    kind = "generation_failed"


class StoreUnavailable(NewsRagError):
    """Raised when a cache, session or vector backing store cannot be reached."""

    kind = "store_unavailable"


class RetrievalFailed(StoreUnavailable):
    kind = "retrieval_failed"


class DimensionMismatch(NewsRagError, ValueError):
    """Raised when a vector does not match the collection dimension."""

    kind = "dimension_mismatch"


class NotFound(NewsRagError, LookupError):
    kind = "not_found"


class InvalidInput(NewsRagError, ValueError):
    kind = "invalid_input"


__all__ = [
    "ConfigurationDegraded",
    "DimensionMismatch",
    "EmbeddingFailed",
    "GenerationFailed",
    "InvalidInput",
    "NewsRagError",
    "NotFound",
    "ProviderError",
    "RetrievalFailed",
    "StoreUnavailable",
]
