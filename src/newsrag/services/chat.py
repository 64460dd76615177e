"""Caller-facing conversation surface over the query pipeline."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping
from uuid import uuid4

from newsrag.cache.sessions import SessionStore
from newsrag.errors import NotFound
from newsrag.metrics.observability import bind_correlation_id, clear_correlation_id, get_logger
from newsrag.models import Message, QueryResult, Session
from newsrag.services.generation import FragmentSink
from newsrag.services.query import QueryService, validate_query


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class SessionLocks:
    """In-process lock per session id; entries are dropped once unused."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: Dict[str, _LockEntry] = {}

    @contextmanager
    def hold(self, session_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.setdefault(session_id, _LockEntry())
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    self._entries.pop(session_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


@dataclass(frozen=True)
class ChatConfig:
    history_window: int = 5
    query_min_length: int = 3
    query_max_length: int = 500


class ChatService:
    """Sequences one user turn: history read, user append, pipeline, assistant append.

    Turns for the same session id are serialized within the process, so message
    order matches call order. A failure after the user message is appended leaves
    that message in place.
    """

    def __init__(
        self,
        sessions: SessionStore,
        query_service: QueryService,
        config: ChatConfig | None = None,
    ) -> None:
        self._sessions = sessions
        self._query = query_service
        self._config = config or ChatConfig()
        self._locks = SessionLocks()
        self._logger = get_logger("chat")

    def create_session(self, meta: Mapping[str, Any] | None = None) -> str:
        session_id = str(uuid4())
        self._sessions.create_session(session_id, meta)
        return session_id

    def ask(self, session_id: str, text: str) -> QueryResult:
        query = self._validate(text)
        bind_correlation_id(uuid4().hex, session_id=session_id)
        try:
            with self._locks.hold(session_id):
                history = self._begin_turn(session_id, query)
                result = self._query.answer(query, session_id=session_id, history=history)
                self._finish_turn(session_id, result)
        finally:
            clear_correlation_id()
        return result

    def ask_stream(self, session_id: str, text: str, on_fragment: FragmentSink) -> QueryResult:
        """Like :meth:`ask`, pushing answer fragments to ``on_fragment`` as they arrive."""

        query = self._validate(text)
        bind_correlation_id(uuid4().hex, session_id=session_id)
        try:
            with self._locks.hold(session_id):
                history = self._begin_turn(session_id, query)
                stream = self._query.stream(
                    query,
                    session_id=session_id,
                    history=history,
                    on_fragment=on_fragment,
                )
                result = stream.result()
                self._finish_turn(session_id, result)
        finally:
            clear_correlation_id()
        return result

    def get_history(self, session_id: str) -> List[Message]:
        return self._sessions.history(session_id)

    def get_session(self, session_id: str) -> Session:
        session = self._sessions.get_session(session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        return session

    def update_session(self, session_id: str, meta: Mapping[str, Any]) -> Session:
        with self._locks.hold(session_id):
            return self._sessions.update_session(session_id, meta)

    def clear_history(self, session_id: str) -> None:
        with self._locks.hold(session_id):
            self._sessions.clear_session(session_id)

    def list_sessions(self) -> List[Session]:
        return self._sessions.list_sessions()

    def _validate(self, text: str) -> str:
        return validate_query(
            text,
            min_length=self._config.query_min_length,
            max_length=self._config.query_max_length,
        )

    def _begin_turn(self, session_id: str, query: str) -> List[Message]:
        session = self._sessions.get_or_create(session_id)
        window = self._config.history_window
        history = list(session.messages)[-window:] if window > 0 else []
        self._sessions.append_message(session_id, Message(id=str(uuid4()), role="user", content=query))
        self._logger.info("chat.turn_started", history_size=len(history))
        return history

    def _finish_turn(self, session_id: str, result: QueryResult) -> None:
        assistant = Message(
            id=str(uuid4()),
            role="assistant",
            content=result.text,
            sources=tuple(result.citations),
        )
        self._sessions.append_message(session_id, assistant)
        self._logger.info("chat.turn_completed", cached=result.cached, citation_count=len(result.citations))
