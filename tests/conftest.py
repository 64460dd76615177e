from __future__ import annotations

from typing import List, Mapping, Sequence
from uuid import uuid4

import chromadb
import pytest

from newsrag.cache.store import Cache, InMemoryKeyValueStore
from newsrag.index.store import ChromaVectorIndex
from newsrag.ingestion import NewsIngestor
from newsrag.models import Document, GeneratedAnswer, Message
from newsrag.services.generation import FragmentSink, GenerationStream, citations_from_context, split_fragments


class FakeClock:
    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class KeywordEmbedder:
    """One axis per keyword; texts matching no keyword land on the last axis."""

    def __init__(self, keywords: Sequence[str] = ("market", "chip", "weather"), dim: int = 4) -> None:
        self._keywords = tuple(keywords)
        self._dim = dim
        self.calls: List[str] = []

    @property
    def dim(self) -> int:
        return self._dim

    def embed(self, text: str) -> tuple[float, ...]:
        self.calls.append(text)
        lowered = text.lower()
        vector = [0.0] * self._dim
        for axis, keyword in enumerate(self._keywords):
            if keyword in lowered:
                vector[axis] = 1.0
        if not any(vector):
            vector[-1] = 1.0
        return tuple(vector)

    def embed_many(self, texts: Sequence[str]) -> List[tuple[float, ...]]:
        return [self.embed(text) for text in texts]


class RecordingGenerator:
    def __init__(self, text: str = "Stocks climbed after the rate decision.") -> None:
        self.text = text
        self.calls: List[Mapping[str, object]] = []

    def generate(self, *, query: str, context: Sequence[Document], history: Sequence[Message]) -> GeneratedAnswer:
        self.calls.append({"query": query, "context": list(context), "history": list(history)})
        return GeneratedAnswer(text=self.text, citations=citations_from_context(context))

    def stream(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
        on_fragment: FragmentSink | None = None,
    ) -> GenerationStream:
        self.calls.append({"query": query, "context": list(context), "history": list(history)})
        return GenerationStream(iter(split_fragments(self.text)), citations_from_context(context), on_fragment)


MARKET_DOC = Document(
    id="doc-market",
    title="Market rallies",
    content="Stocks rose sharply after the central bank held interest rates steady.",
    url="https://news.example.com/market-rallies",
    source="Example Wire",
    published_at="2024-05-14T14:00:00Z",
)
CHIP_DOC = Document(
    id="doc-chip",
    title="New export rules for chip makers",
    content="Regulators tightened export controls on advanced semiconductors this week.",
    url="https://news.example.com/chip-rules",
    source="Daily Example",
    published_at="2024-05-13T09:30:00Z",
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(maxsize=1000)


@pytest.fixture
def query_cache(kv_store: InMemoryKeyValueStore) -> Cache:
    return Cache(kv_store)


@pytest.fixture
def chroma_client():
    return chromadb.EphemeralClient()


@pytest.fixture
def collection_name() -> str:
    # ephemeral clients share state within the process
    return f"test-{uuid4().hex[:12]}"


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def index(chroma_client, collection_name: str) -> ChromaVectorIndex:
    return ChromaVectorIndex(collection_name, dim=4, client=chroma_client)


@pytest.fixture
def news_index(index: ChromaVectorIndex, embedder: KeywordEmbedder) -> ChromaVectorIndex:
    NewsIngestor(embedder, index, sleep=lambda _seconds: None).ingest([MARKET_DOC, CHIP_DOC])
    embedder.calls.clear()
    return index
