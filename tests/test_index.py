from __future__ import annotations

import pytest

from newsrag.errors import DimensionMismatch
from newsrag.index.store import ChromaVectorIndex
from newsrag.models import IndexEntry


def _entry(entry_id: str, vector, title: str = "Title") -> IndexEntry:
    return IndexEntry(
        id=entry_id,
        vector=tuple(vector),
        payload={"title": title, "content": f"{title} body", "url": f"https://news.example.com/{entry_id}", "source": None},
    )


def test_search_respects_k_floor_and_order(index: ChromaVectorIndex):
    index.upsert(
        [
            _entry("exact", (1.0, 0.0, 0.0, 0.0)),
            _entry("close", (0.9, 0.1, 0.0, 0.0)),
            _entry("far", (0.0, 1.0, 0.0, 0.0)),
        ],
    )
    hits = index.search((1.0, 0.0, 0.0, 0.0), k=2, score_floor=0.5)
    assert [hit.id for hit in hits] == ["exact", "close"]
    assert hits[0].score == pytest.approx(1.0, abs=1e-4)
    assert all(hit.score >= 0.5 for hit in hits)
    assert hits[0].score >= hits[1].score

    floored = index.search((1.0, 0.0, 0.0, 0.0), k=3, score_floor=0.5)
    assert "far" not in {hit.id for hit in floored}


def test_search_edge_cases(index: ChromaVectorIndex):
    assert index.search((1.0, 0.0, 0.0, 0.0), k=5) == []
    index.upsert([_entry("one", (1.0, 0.0, 0.0, 0.0))])
    assert index.search((1.0, 0.0, 0.0, 0.0), k=0) == []


def test_upsert_overwrites_same_id(index: ChromaVectorIndex):
    index.upsert([_entry("doc", (1.0, 0.0, 0.0, 0.0), title="First")])
    index.upsert([_entry("doc", (0.0, 1.0, 0.0, 0.0), title="Second")])
    assert index.count() == 1
    hits = index.search((0.0, 1.0, 0.0, 0.0), k=1)
    assert hits[0].document.title == "Second"


def test_dimension_mismatch_rejects_whole_batch(index: ChromaVectorIndex):
    with pytest.raises(DimensionMismatch):
        index.upsert([_entry("good", (1.0, 0.0, 0.0, 0.0)), _entry("bad", (1.0, 0.0))])
    assert index.count() == 0


def test_query_vector_dimension_checked(index: ChromaVectorIndex):
    with pytest.raises(DimensionMismatch):
        index.search((1.0, 0.0), k=1)


def test_ensure_collection_is_idempotent(index: ChromaVectorIndex):
    index.ensure_collection()
    index.ensure_collection()
    assert index.count() == 0
    assert index.info()["metric"] == "cosine"


def test_existing_collection_with_other_dimension(chroma_client, collection_name: str):
    ChromaVectorIndex(collection_name, dim=4, client=chroma_client).ensure_collection()
    with pytest.raises(DimensionMismatch):
        ChromaVectorIndex(collection_name, dim=8, client=chroma_client).ensure_collection()


def test_scroll_returns_documents_and_delete_empties(index: ChromaVectorIndex):
    index.upsert([_entry("a", (1.0, 0.0, 0.0, 0.0), "Alpha"), _entry("b", (0.0, 1.0, 0.0, 0.0), "Beta")])
    documents = index.scroll()
    assert {document.title for document in documents} == {"Alpha", "Beta"}
    assert all(document.source == "" for document in documents)

    index.delete_collection()
    assert index.count() == 0
