"""Shared domain models used across the NewsRAG pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Sequence, Tuple

Role = Literal["user", "assistant"]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Document:
    """A news article as produced by the acquisition layer."""

    id: str
    title: str
    content: str
    url: str
    source: str = ""
    published_at: str = ""
    summary: str = ""

    def payload(self) -> dict[str, str]:
        """Index payload: every field except the identity."""

        return {
            "title": self.title,
            "content": self.content,
            "url": self.url,
            "source": self.source,
            "published_at": self.published_at,
            "summary": self.summary,
        }

    @classmethod
    def from_payload(cls, document_id: str, payload: Mapping[str, Any]) -> "Document":
        return cls(
            id=str(document_id),
            title=str(payload.get("title", "")),
            content=str(payload.get("content", "")),
            url=str(payload.get("url", "")),
            source=str(payload.get("source", "")),
            published_at=str(payload.get("published_at", "")),
            summary=str(payload.get("summary", "")),
        )


@dataclass(frozen=True)
class IndexEntry:
    """Vector plus payload stored in the index under ``id``."""

    id: str
    vector: Tuple[float, ...]
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchHit:
    """Similarity search result; produced fresh per search call."""

    id: str
    score: float
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def document(self) -> Document:
        return Document.from_payload(self.id, self.payload)


@dataclass(frozen=True)
class Citation:
    """Source reference attached to an answer."""

    title: str
    url: str
    source: str = ""

    @classmethod
    def from_document(cls, document: Document) -> "Citation":
        return cls(title=document.title, url=document.url, source=document.source)

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url, "source": self.source}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Citation":
        return cls(
            title=str(data.get("title", "")),
            url=str(data.get("url", "")),
            source=str(data.get("source", "")),
        )


@dataclass(frozen=True)
class Message:
    """A single conversational turn; never mutated once appended."""

    id: str
    role: Role
    content: str
    sources: Sequence[Citation] = ()
    timestamp: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "sources": [citation.to_dict() for citation in self.sources],
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        return cls(
            id=str(data["id"]),
            role=data["role"],
            content=str(data.get("content", "")),
            sources=tuple(Citation.from_dict(item) for item in data.get("sources") or ()),
            timestamp=str(data.get("timestamp", "")),
        )


@dataclass(frozen=True)
class Session:
    """Conversation state owned by the session store."""

    id: str
    created_at: str
    updated_at: str
    messages: Sequence[Message] = ()
    meta: Mapping[str, Any] = field(default_factory=dict)

    def with_message(self, message: Message, *, updated_at: str) -> "Session":
        return replace(self, messages=(*self.messages, message), updated_at=updated_at)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "messages": [message.to_dict() for message in self.messages],
            "meta": dict(self.meta),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Session":
        return cls(
            id=str(data["id"]),
            created_at=str(data.get("created_at", "")),
            updated_at=str(data.get("updated_at", "")),
            messages=tuple(Message.from_dict(item) for item in data.get("messages") or ()),
            meta=dict(data.get("meta") or {}),
        )


@dataclass(frozen=True)
class GeneratedAnswer:
    """Raw output of a generation backend."""

    text: str
    citations: Sequence[Citation] = ()


@dataclass(frozen=True)
class QueryResult:
    """Envelope returned by the query pipeline and stored in the result cache."""

    text: str
    citations: Sequence[Citation]
    query: str
    session_id: str
    timestamp: str
    cached: bool = False
    note: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "text": self.text,
            "citations": [citation.to_dict() for citation in self.citations],
            "query": self.query,
            "session_id": self.session_id,
            "timestamp": self.timestamp,
            "cached": self.cached,
        }
        if self.note is not None:
            data["note"] = self.note
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryResult":
        return cls(
            text=str(data.get("text", "")),
            citations=tuple(Citation.from_dict(item) for item in data.get("citations") or ()),
            query=str(data.get("query", "")),
            session_id=str(data.get("session_id", "")),
            timestamp=str(data.get("timestamp", "")),
            cached=bool(data.get("cached", False)),
            note=data.get("note"),
        )


@dataclass(frozen=True)
class ArticleMatch:
    """Document returned by the article lookup helpers, with its similarity score."""

    id: str
    title: str
    content: str
    url: str
    source: str
    published_at: str
    summary: str
    score: float

    @classmethod
    def from_hit(cls, hit: SearchHit, *, preview_chars: int | None = None) -> "ArticleMatch":
        document = hit.document
        content = document.content
        if preview_chars is not None:
            content = content[:preview_chars] + "..."
        return cls(
            id=document.id,
            title=document.title,
            content=content,
            url=document.url,
            source=document.source,
            published_at=document.published_at,
            summary=document.summary,
            score=hit.score,
        )
