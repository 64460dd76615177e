"""Embedding gateway for NewsRAG."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Literal, Protocol, Sequence, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings, JinaEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings

from newsrag.errors import ConfigurationDegraded, EmbeddingFailed
from newsrag.metrics.observability import PipelineMetrics

LOGGER = logging.getLogger(__name__)

Embedding = Tuple[float, ...]


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    provider: Literal["jina", "huggingface", "hash"] = "jina"
    model: str = "jina-embeddings-v2-base-en"
    dim: int = 768
    api_key: str | None = None
    degrade: bool = True
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None


class EmbeddingGateway(Protocol):
    """Protocol describing embedding behaviour."""

    @property
    def dim(self) -> int:
        """Dimension of every vector this gateway returns."""

    def embed(self, text: str) -> Embedding:
        """Return the embedding vector for a single text."""

    def embed_many(self, texts: Sequence[str]) -> List[Embedding]:
        """Return one vector per text, in input order."""


class HashEmbeddingBackend:
    """Deterministic pseudo-embedding used when no provider is available.

    The same text always maps to the same vector, so cache and search behaviour
    stays reproducible in degraded mode. Components are centred on zero, which
    keeps unrelated texts near-orthogonal instead of uniformly similar.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    @property
    def dim(self) -> int:
        return self._config.dim

    def _hash_to_vector(self, text: str) -> Embedding:
        encoded = text.encode("utf-8")
        raw = bytearray()
        counter = 0
        while len(raw) < self._config.dim:
            raw.extend(hashlib.sha256(counter.to_bytes(4, "big") + encoded).digest())
            counter += 1
        vector = [byte / 127.5 - 1.0 for byte in raw[: self._config.dim]]
        if self._config.normalize:
            norm = math.sqrt(sum(value * value for value in vector)) or 1.0
            vector = [value / norm for value in vector]
        return tuple(vector)

    def embed(self, text: str) -> Embedding:
        return self._hash_to_vector(text)

    def embed_many(self, texts: Sequence[str]) -> List[Embedding]:
        return [self._hash_to_vector(text) for text in texts]


class ProviderEmbeddingBackend:
    """Embedding backend delegating to a LangChain embeddings client.

    Provider errors degrade to the deterministic hash backend unless the config
    disables degradation, in which case :class:`EmbeddingFailed` is raised.
    """

    def __init__(
        self,
        client: LangChainEmbeddings,
        config: EmbeddingConfig | None = None,
        fallback: HashEmbeddingBackend | None = None,
    ) -> None:
        self._client = client
        self._config = config or EmbeddingConfig()
        self._fallback = fallback or HashEmbeddingBackend(self._config)

    @property
    def dim(self) -> int:
        return self._config.dim

    def embed(self, text: str) -> Embedding:
        try:
            vector = self._check(self._client.embed_query(text))
        except Exception as exc:
            return self._degrade([text], exc)[0]
        return self._normalize(vector)

    def embed_many(self, texts: Sequence[str]) -> List[Embedding]:
        if not texts:
            return []
        try:
            vectors = self._client.embed_documents(list(texts))
            if len(vectors) != len(texts):
                raise ValueError(
                    f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                )
            checked = [self._normalize(self._check(vector)) for vector in vectors]
        except Exception as exc:
            return self._degrade(texts, exc)
        return checked

    def _degrade(self, texts: Sequence[str], exc: Exception) -> List[Embedding]:
        if not self._config.degrade:
            raise EmbeddingFailed(f"Embedding provider failed: {exc}") from exc
        LOGGER.warning("Embedding provider failed, using fallback for %d texts: %s", len(texts), exc)
        PipelineMetrics.observe_fallback(len(texts))
        return self._fallback.embed_many(texts)

    def _check(self, vector: Sequence[float]) -> Embedding:
        if len(vector) != self._config.dim:
            raise ValueError(f"Embedding dim mismatch: configured={self._config.dim}, actual={len(vector)}")
        return tuple(float(value) for value in vector)

    def _normalize(self, vector: Embedding) -> Embedding:
        if not self._config.normalize:
            return vector
        norm = math.sqrt(sum(value * value for value in vector)) or 1.0
        return tuple(value / norm for value in vector)


def _build_client(config: EmbeddingConfig) -> LangChainEmbeddings:
    if config.provider == "jina":
        if not config.api_key:
            raise ConfigurationDegraded("Jina API key not configured")
        return JinaEmbeddings(jina_api_key=config.api_key, model_name=config.model)
    if config.provider == "huggingface":
        model_kwargs = {"device": config.device} if config.device else {}
        return HuggingFaceEmbeddings(
            model_name=config.model,
            model_kwargs=model_kwargs,
            encode_kwargs={"normalize_embeddings": config.normalize},
            cache_folder=config.cache_folder,
        )
    raise ConfigurationDegraded(f"Unknown embedding provider: {config.provider}")


def build_embedding_gateway(config: EmbeddingConfig | None = None) -> EmbeddingGateway:
    """Pick the live or fallback embedding implementation once."""

    config = config or EmbeddingConfig()
    fallback = HashEmbeddingBackend(config)
    if config.provider == "hash":
        LOGGER.info("Embedding gateway running in hash-only mode.")
        return fallback
    try:
        client = _build_client(config)
    except ConfigurationDegraded as exc:
        if not config.degrade:
            raise EmbeddingFailed(str(exc)) from exc
        LOGGER.warning("Embedding gateway degraded to hash embeddings: %s", exc)
        return fallback
    except Exception as exc:  # pragma: no cover - provider import/runtime guard
        if not config.degrade:
            raise EmbeddingFailed(f"Could not initialise embedding provider: {exc}") from exc
        LOGGER.warning("Falling back to hash embeddings: %s", exc)
        return fallback
    LOGGER.info("Embedding gateway using %s model %s", config.provider, config.model)
    return ProviderEmbeddingBackend(client, config, fallback=fallback)
