from __future__ import annotations

import math

import pytest

from newsrag.embeddings.service import (
    EmbeddingConfig,
    HashEmbeddingBackend,
    ProviderEmbeddingBackend,
    build_embedding_gateway,
)
from newsrag.errors import EmbeddingFailed


class StubLangChainClient:
    def __init__(self, dim: int = 8, fail: bool = False, wrong_dim: bool = False) -> None:
        self._dim = dim
        self._fail = fail
        self._wrong_dim = wrong_dim
        self.calls = 0

    def _vector(self, text: str) -> list[float]:
        size = self._dim + 1 if self._wrong_dim else self._dim
        return [float(len(text) + i) for i in range(size)]

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        if self._fail:
            raise RuntimeError("provider down")
        return self._vector(text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        if self._fail:
            raise RuntimeError("provider down")
        return [self._vector(text) for text in texts]


def test_hash_embedding_dim_matches_config():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=64))
    vec = backend.embed("hello world")
    assert isinstance(vec, tuple)
    assert len(vec) == 64
    assert backend.dim == 64


def test_hash_embedding_is_deterministic_and_normalized():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=32))
    first = backend.embed("Market rallies")
    assert first == HashEmbeddingBackend(EmbeddingConfig(dim=32)).embed("Market rallies")
    assert first != backend.embed("Market slumps")
    assert math.isclose(math.sqrt(sum(value * value for value in first)), 1.0, rel_tol=1e-9)


def test_hash_embed_many_preserves_order():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    vectors = backend.embed_many(["alpha", "beta"])
    assert vectors == [backend.embed("alpha"), backend.embed("beta")]


def test_provider_vectors_are_normalized():
    config = EmbeddingConfig(dim=8)
    backend = ProviderEmbeddingBackend(StubLangChainClient(dim=8), config)
    vector = backend.embed("some text")
    assert len(vector) == 8
    assert math.isclose(math.sqrt(sum(value * value for value in vector)), 1.0, rel_tol=1e-9)


def test_provider_failure_degrades_to_hash_vectors():
    config = EmbeddingConfig(dim=8, degrade=True)
    backend = ProviderEmbeddingBackend(StubLangChainClient(dim=8, fail=True), config)
    expected = HashEmbeddingBackend(config)
    assert backend.embed("query") == expected.embed("query")
    assert backend.embed_many(["a", "b"]) == expected.embed_many(["a", "b"])


def test_provider_dimension_mismatch_degrades():
    config = EmbeddingConfig(dim=8)
    backend = ProviderEmbeddingBackend(StubLangChainClient(dim=8, wrong_dim=True), config)
    assert backend.embed("query") == HashEmbeddingBackend(config).embed("query")


def test_provider_failure_raises_when_degrade_disabled():
    config = EmbeddingConfig(dim=8, degrade=False)
    backend = ProviderEmbeddingBackend(StubLangChainClient(dim=8, fail=True), config)
    with pytest.raises(EmbeddingFailed):
        backend.embed("query")
    with pytest.raises(EmbeddingFailed):
        backend.embed_many(["a"])


def test_embed_many_empty_skips_provider():
    client = StubLangChainClient(dim=8)
    backend = ProviderEmbeddingBackend(client, EmbeddingConfig(dim=8))
    assert backend.embed_many([]) == []
    assert client.calls == 0


def test_gateway_without_credentials_uses_hash_backend():
    gateway = build_embedding_gateway(EmbeddingConfig(provider="jina", api_key=None, dim=16))
    assert isinstance(gateway, HashEmbeddingBackend)
    assert gateway.dim == 16


def test_gateway_without_credentials_raises_when_degrade_disabled():
    with pytest.raises(EmbeddingFailed):
        build_embedding_gateway(EmbeddingConfig(provider="jina", api_key=None, degrade=False))


def test_gateway_hash_provider():
    assert isinstance(build_embedding_gateway(EmbeddingConfig(provider="hash", dim=8)), HashEmbeddingBackend)
