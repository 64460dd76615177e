from __future__ import annotations

import json
from uuid import NAMESPACE_URL, uuid5

import pytest

from conftest import KeywordEmbedder
from newsrag.cache.store import Cache, InMemoryKeyValueStore
from newsrag.errors import StoreUnavailable
from newsrag.ingestion.service import (
    LATEST_ARTICLES_KEY,
    IngestionConfig,
    IngestionError,
    NewsIngestor,
    article_text,
    dedupe_by_url,
    document_from_record,
    load_documents,
)
from newsrag.models import Document


def _doc(index: int, *, url: str | None = None, title: str | None = None, content: str | None = None) -> Document:
    return Document(
        id=f"doc-{index}",
        title=title if title is not None else f"Headline number {index} today",
        content=content if content is not None else "Body text that is comfortably longer than fifty characters. " * 2,
        url=url or f"https://news.example.com/{index}",
        source="Wire",
    )


class RecordingIndex:
    dim = 4

    def __init__(self, reject: set[str] | None = None) -> None:
        self.reject = reject or set()
        self.batches: list[list[str]] = []

    def upsert(self, entries):
        ids = [entry.id for entry in entries]
        if self.reject.intersection(ids):
            raise StoreUnavailable("write rejected")
        self.batches.append(ids)
        return ids


class FlakyEmbedder(KeywordEmbedder):
    def embed_many(self, texts):
        raise ConnectionError("batch endpoint down")

    def embed(self, text):
        if "poison" in text:
            raise ConnectionError("cannot embed")
        return super().embed(text)


def test_dedupe_keeps_first_by_url():
    first = _doc(1, url="https://news.example.com/same")
    second = _doc(2, url="https://news.example.com/same")
    unique, dropped = dedupe_by_url([first, second, _doc(3)])
    assert [document.id for document in unique] == ["doc-1", "doc-3"]
    assert dropped == 1


def test_article_text_truncates():
    document = _doc(1, title="Title", content="x" * 100)
    assert article_text(document) == "Title\n\n" + "x" * 100
    assert article_text(document, max_chars=10) == ("Title\n\n" + "x" * 100)[:10] + "..."


def test_ingest_filters_batches_and_pauses():
    pauses: list[float] = []
    index = RecordingIndex()
    ingestor = NewsIngestor(KeywordEmbedder(), index, IngestionConfig(batch_size=5), sleep=pauses.append)
    documents = [_doc(i) for i in range(7)] + [_doc(8, title="Short"), _doc(9, content="tiny"), _doc(10, url="https://news.example.com/0")]

    report = ingestor.ingest(documents)

    assert report.received == 10
    assert report.indexed == 7
    assert report.duplicates == 1
    assert report.filtered == 2
    assert report.failed == 0
    assert [len(batch) for batch in index.batches] == [5, 2]
    assert pauses == [1.0]


def test_embedding_failure_isolated_to_one_document():
    index = RecordingIndex()
    ingestor = NewsIngestor(FlakyEmbedder(), index, sleep=lambda _s: None)
    documents = [_doc(1), _doc(2, content="poison " * 20), _doc(3)]

    report = ingestor.ingest(documents)

    assert report.indexed == 2
    assert report.failed == 1
    assert report.document_ids == ("doc-1", "doc-3")


def test_upsert_failure_isolated_to_one_document():
    index = RecordingIndex(reject={"doc-2"})
    ingestor = NewsIngestor(KeywordEmbedder(), index, sleep=lambda _s: None)

    report = ingestor.ingest([_doc(1), _doc(2), _doc(3)])

    assert report.indexed == 2
    assert report.failed == 1
    assert index.batches == [["doc-1"], ["doc-3"]]


def test_latest_articles_cached(query_cache: Cache):
    ingestor = NewsIngestor(KeywordEmbedder(), RecordingIndex(), cache=query_cache, sleep=lambda _s: None)
    ingestor.ingest([_doc(1), _doc(2)])
    latest = query_cache.get(LATEST_ARTICLES_KEY)
    assert [item["id"] for item in latest] == ["doc-1", "doc-2"]
    assert "content" not in latest[0]


def test_document_from_record_accepts_feed_keys():
    document = document_from_record(
        {
            "title": "Headline",
            "description": "Body",
            "url": "https://news.example.com/a",
            "publishedAt": "2024-05-14T14:00:00Z",
        },
    )
    assert document.id == uuid5(NAMESPACE_URL, "https://news.example.com/a").hex
    assert document.content == "Body"
    assert document.published_at == "2024-05-14T14:00:00Z"


def test_load_documents_formats(tmp_path):
    records = [{"id": "a", "title": "A", "content": "x", "url": "https://n.example/a"}]
    as_list = tmp_path / "list.json"
    as_list.write_text(json.dumps(records), encoding="utf-8")
    as_object = tmp_path / "object.json"
    as_object.write_text(json.dumps({"documents": records}), encoding="utf-8")
    as_lines = tmp_path / "lines.jsonl"
    as_lines.write_text("\n".join(json.dumps(record) for record in records * 2) + "\n", encoding="utf-8")

    assert [document.id for document in load_documents(as_list)] == ["a"]
    assert [document.id for document in load_documents(as_object)] == ["a"]
    assert len(load_documents(as_lines)) == 2


def test_load_documents_errors(tmp_path):
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(IngestionError):
        load_documents(broken)
    with pytest.raises(IngestionError):
        load_documents(tmp_path / "missing.json")


def test_full_cache_does_not_fail_ingestion():
    cache = Cache(InMemoryKeyValueStore(maxsize=1))
    cache.set("occupied", {"live": True})
    ingestor = NewsIngestor(KeywordEmbedder(), RecordingIndex(), cache=cache, sleep=lambda _s: None)

    report = ingestor.ingest([_doc(1)])

    assert report.indexed == 1
    assert cache.get(LATEST_ARTICLES_KEY) is None
