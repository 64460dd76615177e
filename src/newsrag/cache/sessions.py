"""Session lifecycle and bounded message history on top of the cache."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, List, Mapping

from newsrag.cache.store import SESSION_PREFIX, Cache, KeyValueStore
from newsrag.errors import NotFound
from newsrag.metrics.observability import get_logger
from newsrag.models import Message, Session, utc_now_iso


class SessionStore:
    """Stores each session as one JSON value under ``session:<id>``.

    Every write refreshes the TTL, so an idle session expires ``ttl_seconds``
    after its last write. Appends are read-modify-write and are not serialized
    here; callers that need strict ordering must serialize per session id.
    """

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int = 3600) -> None:
        self._cache = Cache(store, prefix=SESSION_PREFIX, default_ttl=ttl_seconds)
        self._ttl = ttl_seconds
        self._logger = get_logger("sessions")

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def create_session(self, session_id: str, meta: Mapping[str, Any] | None = None) -> Session:
        """Create ``session_id`` with an empty history, overwriting any existing session."""

        now = utc_now_iso()
        session = Session(id=session_id, created_at=now, updated_at=now, messages=(), meta=dict(meta or {}))
        self._write(session)
        self._logger.info("session.created", session_id=session_id)
        return session

    def get_session(self, session_id: str) -> Session | None:
        data = self._cache.get(session_id)
        if data is None:
            return None
        return Session.from_dict(data)

    def get_or_create(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        if session is None:
            session = self.create_session(session_id)
        return session

    def append_message(self, session_id: str, message: Message) -> Session:
        session = self.get_session(session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        updated = session.with_message(message, updated_at=utc_now_iso())
        self._write(updated)
        return updated

    def update_session(self, session_id: str, meta: Mapping[str, Any]) -> Session:
        """Merge ``meta`` into the session metadata; messages are left untouched."""

        session = self.get_session(session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        updated = replace(session, meta={**session.meta, **meta}, updated_at=utc_now_iso())
        self._write(updated)
        self._logger.info("session.updated", session_id=session_id, fields=sorted(meta))
        return updated

    def history(self, session_id: str, limit: int | None = None) -> List[Message]:
        session = self.get_session(session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        messages = list(session.messages)
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def clear_session(self, session_id: str) -> None:
        self._cache.delete(session_id)
        self._logger.info("session.cleared", session_id=session_id)

    def list_sessions(self) -> List[Session]:
        sessions: List[Session] = []
        for key in self._cache.list_keys():
            session = self.get_session(key)
            # may have expired between the scan and the read
            if session is not None:
                sessions.append(session)
        return sessions

    def _write(self, session: Session) -> None:
        self._cache.set(session.id, session.to_dict(), ttl=self._ttl)
