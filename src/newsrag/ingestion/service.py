"""Document ingestion service for NewsRAG."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable, List, Mapping, Sequence, Tuple
from uuid import NAMESPACE_URL, uuid4, uuid5

from newsrag.cache.store import Cache
from newsrag.embeddings.service import Embedding, EmbeddingGateway
from newsrag.errors import NewsRagError, StoreUnavailable
from newsrag.index.store import VectorIndex
from newsrag.metrics.observability import PipelineMetrics, get_logger
from newsrag.models import Document, IndexEntry

LATEST_ARTICLES_KEY = "latest_articles"


class IngestionError(NewsRagError):
    """Raised when a document source cannot be read."""

    kind = "ingestion_error"


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document ingestion."""

    batch_size: int = 5
    batch_pause_seconds: float = 1.0
    min_title_length: int = 10
    min_content_length: int = 50
    max_embed_chars: int = 8000
    latest_articles_ttl_seconds: int = 3600


@dataclass(frozen=True)
class IngestionReport:
    """Outcome counts for one ingestion run."""

    received: int
    indexed: int
    duplicates: int = 0
    filtered: int = 0
    failed: int = 0
    document_ids: Tuple[str, ...] = field(default_factory=tuple)


def dedupe_by_url(documents: Iterable[Document]) -> Tuple[List[Document], int]:
    """Keep the first document for every url; return survivors and the drop count."""

    seen: set[str] = set()
    unique: List[Document] = []
    dropped = 0
    for document in documents:
        if document.url in seen:
            dropped += 1
            continue
        seen.add(document.url)
        unique.append(document)
    return unique, dropped


def article_text(document: Document, max_chars: int = 8000) -> str:
    """Text sent to the embedding provider for an article."""

    text = f"{document.title}\n\n{document.content}"
    if len(text) > max_chars:
        return text[:max_chars] + "..."
    return text


class NewsIngestor:
    """Embeds documents in small batches and upserts them into the vector index.

    A failure affecting one document is logged and counted; it never aborts the
    rest of the run.
    """

    def __init__(
        self,
        embedder: EmbeddingGateway,
        index: VectorIndex,
        config: IngestionConfig | None = None,
        *,
        cache: Cache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._config = config or IngestionConfig()
        self._cache = cache
        self._sleep = sleep
        self._logger = get_logger("ingestion")

    def ingest(self, documents: Sequence[Document]) -> IngestionReport:
        start = time.perf_counter()
        unique, duplicates = dedupe_by_url(documents)
        valid = [document for document in unique if self._is_substantial(document)]
        filtered = len(unique) - len(valid)

        indexed: List[Document] = []
        size = max(1, self._config.batch_size)
        for offset in range(0, len(valid), size):
            if offset and self._config.batch_pause_seconds > 0:
                self._sleep(self._config.batch_pause_seconds)
            indexed.extend(self._ingest_batch(valid[offset : offset + size]))

        failed = len(valid) - len(indexed)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(indexed), failed)
        self._logger.info(
            "ingestion.complete",
            received=len(documents),
            indexed=len(indexed),
            duplicates=duplicates,
            filtered=filtered,
            failed=failed,
            duration_seconds=duration,
        )
        if indexed and self._cache is not None:
            self._cache_latest(indexed)
        return IngestionReport(
            received=len(documents),
            indexed=len(indexed),
            duplicates=duplicates,
            filtered=filtered,
            failed=failed,
            document_ids=tuple(document.id for document in indexed),
        )

    def _is_substantial(self, document: Document) -> bool:
        return (
            len(document.title.strip()) > self._config.min_title_length
            and len(document.content.strip()) > self._config.min_content_length
        )

    def _ingest_batch(self, batch: Sequence[Document]) -> List[Document]:
        embedded = self._embed_batch(batch)
        entries = [
            IndexEntry(id=document.id, vector=vector, payload=document.payload()) for document, vector in embedded
        ]
        if not entries:
            return []
        try:
            self._index.upsert(entries)
            return [document for document, _ in embedded]
        except Exception as exc:
            self._logger.warning("ingestion.batch_upsert_failed", size=len(entries), error=str(exc))
        # the batch upsert is all-or-nothing; retry entries one by one to isolate bad ones
        stored: List[Document] = []
        for (document, _), entry in zip(embedded, entries):
            try:
                self._index.upsert([entry])
            except Exception as exc:
                self._logger.warning("ingestion.document_failed", document_id=document.id, stage="upsert", error=str(exc))
                continue
            stored.append(document)
        return stored

    def _embed_batch(self, batch: Sequence[Document]) -> List[Tuple[Document, Embedding]]:
        texts = [article_text(document, self._config.max_embed_chars) for document in batch]
        try:
            vectors = self._embedder.embed_many(texts)
            if len(vectors) != len(batch):
                raise ValueError(f"expected {len(batch)} vectors, got {len(vectors)}")
            return list(zip(batch, vectors))
        except Exception as exc:
            self._logger.warning("ingestion.batch_embed_failed", size=len(batch), error=str(exc))
        embedded: List[Tuple[Document, Embedding]] = []
        for document, text in zip(batch, texts):
            try:
                embedded.append((document, self._embedder.embed(text)))
            except Exception as exc:
                self._logger.warning("ingestion.document_failed", document_id=document.id, stage="embed", error=str(exc))
        return embedded

    def _cache_latest(self, documents: Sequence[Document]) -> None:
        summaries = [
            {
                "id": document.id,
                "title": document.title,
                "url": document.url,
                "source": document.source,
                "published_at": document.published_at,
                "summary": document.summary,
            }
            for document in documents
        ]
        try:
            self._cache.set(LATEST_ARTICLES_KEY, summaries, ttl=self._config.latest_articles_ttl_seconds)
        except StoreUnavailable as exc:
            self._logger.warning("ingestion.latest_articles_not_cached", error=str(exc))


def document_from_record(record: Mapping[str, Any]) -> Document:
    """Build a :class:`Document` from a raw feed record (camelCase or snake_case keys)."""

    url = str(record.get("url") or record.get("link") or "")
    document_id = record.get("id") or (uuid5(NAMESPACE_URL, url).hex if url else uuid4().hex)
    return Document(
        id=str(document_id),
        title=str(record.get("title") or ""),
        content=str(record.get("content") or record.get("description") or ""),
        url=url,
        source=str(record.get("source") or ""),
        published_at=str(record.get("published_at") or record.get("publishedAt") or ""),
        summary=str(record.get("summary") or ""),
    )


def load_documents(path: Path) -> List[Document]:
    """Load documents from a JSON array, a ``{"documents": [...]}`` object, or JSON Lines."""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IngestionError(f"Failed to read {path}: {exc}") from exc
    try:
        if path.suffix.lower() == ".jsonl":
            records = [json.loads(line) for line in raw.splitlines() if line.strip()]
        else:
            data = json.loads(raw)
            records = data.get("documents", []) if isinstance(data, dict) else data
    except json.JSONDecodeError as exc:
        raise IngestionError(f"Invalid JSON in {path}: {exc}") from exc
    if not isinstance(records, list):
        raise IngestionError(f"Expected a list of documents in {path}")
    return [document_from_record(record) for record in records if isinstance(record, Mapping)]
