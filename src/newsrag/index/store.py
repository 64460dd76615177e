"""Vector index implementations."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from newsrag.errors import DimensionMismatch, StoreUnavailable
from newsrag.metrics.observability import PipelineMetrics, get_logger
from newsrag.models import Document, IndexEntry, SearchHit

_METRIC = "cosine"


class VectorIndex(Protocol):
    """Protocol for the single logical document collection."""

    @property
    def dim(self) -> int:
        """Configured vector dimension of the collection."""

    def ensure_collection(self) -> None:
        """Create the collection if absent; safe to call repeatedly."""

    def upsert(self, entries: Sequence[IndexEntry]) -> Sequence[str]:
        """Insert or overwrite entries; the whole batch fails on any dimension mismatch."""

    def search(self, vector: Sequence[float], *, k: int = 5, score_floor: float = 0.0) -> Sequence[SearchHit]:
        """Return at most ``k`` hits with ``score >= score_floor``, best first."""

    def scroll(self) -> Sequence[Document]:
        """Return every stored document."""

    def count(self) -> int:
        """Return the number of stored entries."""

    def delete_collection(self) -> None:
        """Drop the collection and everything in it."""


class ChromaVectorIndex:
    """Chroma-backed vector index using cosine similarity."""

    def __init__(
        self,
        collection_name: str = "news_articles",
        *,
        dim: int = 768,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._name = collection_name
        self._dim = dim
        self._collection: Collection | None = None
        self._logger = get_logger("index")

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def name(self) -> str:
        return self._name

    def ensure_collection(self) -> None:
        self._get_collection()

    def upsert(self, entries: Sequence[IndexEntry]) -> Sequence[str]:
        if not entries:
            return []
        for entry in entries:
            if len(entry.vector) != self._dim:
                raise DimensionMismatch(
                    f"Entry {entry.id} has dimension {len(entry.vector)}, collection expects {self._dim}",
                )
        collection = self._get_collection()
        ids = [entry.id for entry in entries]
        try:
            collection.upsert(
                ids=ids,
                embeddings=[list(entry.vector) for entry in entries],
                metadatas=[self._serialize_payload(entry.payload) for entry in entries],
            )
        except Exception as exc:
            raise StoreUnavailable(f"Vector upsert failed: {exc}") from exc
        self._logger.info("index.upsert", collection=self._name, count=len(ids))
        return ids

    def search(self, vector: Sequence[float], *, k: int = 5, score_floor: float = 0.0) -> Sequence[SearchHit]:
        if k <= 0:
            return []
        if len(vector) != self._dim:
            raise DimensionMismatch(f"Query vector has dimension {len(vector)}, collection expects {self._dim}")
        collection = self._get_collection()
        start = time.perf_counter()
        try:
            if collection.count() == 0:
                return []
            results = collection.query(
                query_embeddings=[list(vector)],
                n_results=k,
                include=["metadatas", "distances"],
            )
        except Exception as exc:
            raise StoreUnavailable(f"Vector search failed: {exc}") from exc
        hits = [hit for hit in self._deserialize_results(results) if hit.score >= score_floor]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        hits = hits[:k]
        PipelineMetrics.observe_retrieval(time.perf_counter() - start, len(hits), (hit.score for hit in hits))
        return hits

    def scroll(self) -> Sequence[Document]:
        collection = self._get_collection()
        documents: list[Document] = []
        limit = 1000
        offset = 0
        try:
            while True:
                batch = collection.get(include=["metadatas"], limit=limit, offset=offset)
                ids = batch.get("ids") or []
                metadatas = batch.get("metadatas") or []
                for doc_id, metadata in zip(ids, metadatas):
                    documents.append(Document.from_payload(doc_id, metadata or {}))
                if len(ids) < limit:
                    break
                offset += limit
        except Exception as exc:
            raise StoreUnavailable(f"Vector scroll failed: {exc}") from exc
        return documents

    def count(self) -> int:
        try:
            return int(self._get_collection().count())
        except StoreUnavailable:
            raise
        except Exception as exc:
            raise StoreUnavailable(f"Vector count failed: {exc}") from exc

    def delete_collection(self) -> None:
        try:
            self._client.delete_collection(self._name)
        except Exception as exc:
            raise StoreUnavailable(f"Could not delete collection {self._name}: {exc}") from exc
        self._collection = None
        self._logger.info("index.collection_deleted", collection=self._name)

    def info(self) -> Dict[str, object]:
        return {
            "collection": self._name,
            "dimension": self._dim,
            "metric": _METRIC,
            "count": self.count(),
        }

    def _get_collection(self) -> Collection:
        if self._collection is not None:
            return self._collection
        try:
            collection = self._client.get_or_create_collection(
                name=self._name,
                metadata={"hnsw:space": _METRIC, "dimension": self._dim},
            )
        except Exception as exc:
            raise StoreUnavailable(f"Could not open collection {self._name}: {exc}") from exc
        existing = (collection.metadata or {}).get("dimension")
        if existing is not None and int(existing) != self._dim:
            raise DimensionMismatch(
                f"Collection {self._name} was created with dimension {existing}, configured {self._dim}",
            )
        self._collection = collection
        return collection

    @staticmethod
    def _serialize_payload(payload: Mapping[str, Any]) -> MutableMapping[str, str | int | float | bool]:
        # Chroma metadata values must be scalars and never None.
        metadata: MutableMapping[str, str | int | float | bool] = {}
        for key, value in payload.items():
            if value is None:
                metadata[key] = ""
            elif isinstance(value, (str, int, float, bool)):
                metadata[key] = value
            else:
                metadata[key] = str(value)
        return metadata

    def _deserialize_results(self, results: Mapping[str, object]) -> List[SearchHit]:
        ids = self._first(results.get("ids"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        hits: List[SearchHit] = []
        for doc_id, metadata, distance in zip(ids, metadatas, distances):
            hits.append(SearchHit(id=str(doc_id), score=self._score(distance), payload=dict(metadata or {})))
        return hits

    @staticmethod
    def _score(distance: float | None) -> float:
        if distance is None:
            return 0.0
        similarity = 1.0 - float(distance)
        return min(1.0, max(0.0, similarity))

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            return list(value[0] or [])
        return []
