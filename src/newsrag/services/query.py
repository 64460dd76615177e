"""Query orchestration combining the cache, retrieval and generation."""

from __future__ import annotations

import base64
import re
import time
from dataclasses import dataclass, replace
from typing import Callable, Iterator, List, Sequence

from newsrag.cache.store import Cache
from newsrag.embeddings.service import Embedding, EmbeddingGateway
from newsrag.errors import EmbeddingFailed, GenerationFailed, InvalidInput, RetrievalFailed
from newsrag.index.store import VectorIndex
from newsrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from newsrag.models import ArticleMatch, Document, GeneratedAnswer, Message, QueryResult, SearchHit, utc_now_iso
from newsrag.services.generation import FragmentSink, GenerationBackend, GenerationStream

NO_CONTEXT_NOTE = "No relevant news articles found, but here's an AI-generated response"

_STOP_WORDS = frozenset(
    """
    the and or but in on at to for of with by is are was were be been have has had do does did
    will would could should may might can what when where why how who
    """.split(),
)
_NON_WORD_RE = re.compile(r"[^\w\s]")


@dataclass(frozen=True)
class QueryConfig:
    """Configuration for the query pipeline."""

    top_k: int = 5
    score_floor: float = 0.7
    history_window: int = 5
    cache_ttl_seconds: int = 1800
    relevant_limit: int = 10
    relevant_floor: float = 0.6
    search_limit: int = 20
    search_floor: float = 0.5
    preview_chars: int = 500


def cache_key(query: str) -> str:
    """Canonical cache key for raw query text; no normalization is applied."""

    return "query:" + base64.b64encode(query.encode("utf-8")).decode("ascii")


def validate_query(query: object, *, min_length: int = 3, max_length: int = 500) -> str:
    """Return ``query`` unchanged if it is a string of acceptable trimmed length."""

    if not isinstance(query, str) or not query.strip():
        raise InvalidInput("Query must be a non-empty string")
    trimmed = query.strip()
    if len(trimmed) < min_length:
        raise InvalidInput(f"Query must be at least {min_length} characters long")
    if len(trimmed) > max_length:
        raise InvalidInput(f"Query must be at most {max_length} characters long")
    return query


def extract_keywords(query: str) -> List[str]:
    words = _NON_WORD_RE.sub("", query.lower()).split()
    return [word for word in words if len(word) > 2 and word not in _STOP_WORDS]


class QueryStream:
    """Streaming counterpart of :class:`QueryResult`.

    Iterate to receive answer fragments; :meth:`result` drains the rest and
    returns the final envelope.
    """

    def __init__(self, generation: GenerationStream, finalize: Callable[[GeneratedAnswer], QueryResult]) -> None:
        self._generation = generation
        self._finalize = finalize
        self._result: QueryResult | None = None

    def __iter__(self) -> Iterator[str]:
        return iter(self._generation)

    def result(self) -> QueryResult:
        if self._result is None:
            self._result = self._finalize(self._generation.result())
        return self._result


class QueryService:
    """Runs one query through cache check, embed, retrieve, generate and persist."""

    def __init__(
        self,
        embedder: EmbeddingGateway,
        index: VectorIndex,
        generator: GenerationBackend,
        cache: Cache,
        config: QueryConfig | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._generator = generator
        self._cache = cache
        self._config = config or QueryConfig()
        self._logger = get_logger("query")

    @property
    def config(self) -> QueryConfig:
        return self._config

    def answer(self, query: str, *, session_id: str, history: Sequence[Message] = ()) -> QueryResult:
        key = cache_key(query)
        cached = self._lookup(key)
        if cached is not None:
            return cached

        vector = self._embed(query)
        hits = self._retrieve(vector, k=self._config.top_k, score_floor=self._config.score_floor)
        context = [hit.document for hit in hits]
        answer = self._generate(query, context, history)
        result = self._envelope(answer, query=query, session_id=session_id, has_context=bool(context))
        self._store(key, result)
        return result

    def stream(
        self,
        query: str,
        *,
        session_id: str,
        history: Sequence[Message] = (),
        on_fragment: FragmentSink | None = None,
    ) -> QueryStream:
        key = cache_key(query)
        cached = self._lookup(key)
        if cached is not None:
            fragments = iter([cached.text]) if cached.text else iter(())
            return QueryStream(
                GenerationStream(fragments, cached.citations, on_fragment),
                lambda _answer: cached,
            )

        vector = self._embed(query)
        hits = self._retrieve(vector, k=self._config.top_k, score_floor=self._config.score_floor)
        context = [hit.document for hit in hits]
        start = time.perf_counter()
        try:
            generation = self._generator.stream(
                query=query,
                context=context,
                history=self._window(history),
                on_fragment=on_fragment,
            )
        except GenerationFailed:
            raise
        except Exception as exc:
            raise GenerationFailed(f"Generation failed: {exc}") from exc

        def finalize(answer: GeneratedAnswer) -> QueryResult:
            # the stream has been drained by the time this runs
            self._record_generation(time.perf_counter() - start, answer, streamed=True)
            result = self._envelope(answer, query=query, session_id=session_id, has_context=bool(context))
            self._store(key, result)
            return result

        return QueryStream(_guard_stream(generation), finalize)

    def relevant_articles(self, query: str, limit: int | None = None) -> List[ArticleMatch]:
        """Articles related to ``query`` with content truncated to a preview."""

        vector = self._embed(query)
        hits = self._retrieve(
            vector,
            k=limit or self._config.relevant_limit,
            score_floor=self._config.relevant_floor,
        )
        return [ArticleMatch.from_hit(hit, preview_chars=self._config.preview_chars) for hit in hits]

    def search_articles(self, keyword: str, limit: int | None = None) -> List[ArticleMatch]:
        vector = self._embed(keyword)
        hits = self._retrieve(
            vector,
            k=limit or self._config.search_limit,
            score_floor=self._config.search_floor,
        )
        return [ArticleMatch.from_hit(hit) for hit in hits]

    def clear_cache(self) -> int:
        removed = self._cache.clear()
        self._logger.info("query.cache_cleared", removed=removed)
        return removed

    def _lookup(self, key: str) -> QueryResult | None:
        data = self._cache.get(key)
        PipelineMetrics.observe_cache(data is not None)
        if data is None:
            return None
        self._logger.info("query.cache_hit", key=key)
        return QueryResult.from_dict(data)

    def _embed(self, query: str) -> Embedding:
        try:
            with TimedSection(PipelineMetrics.observe_embedding):
                return self._embedder.embed(query)
        except EmbeddingFailed:
            raise
        except Exception as exc:
            raise EmbeddingFailed(f"Embedding failed: {exc}") from exc

    def _retrieve(self, vector: Embedding, *, k: int, score_floor: float) -> Sequence[SearchHit]:
        start = time.perf_counter()
        try:
            hits = self._index.search(vector, k=k, score_floor=score_floor)
        except RetrievalFailed:
            raise
        except Exception as exc:
            raise RetrievalFailed(f"Retrieval failed: {exc}") from exc
        self._logger.info(
            "retrieval.complete",
            hit_count=len(hits),
            top_k=k,
            score_floor=score_floor,
            duration_seconds=time.perf_counter() - start,
        )
        return hits

    def _generate(self, query: str, context: Sequence[Document], history: Sequence[Message]) -> GeneratedAnswer:
        start = time.perf_counter()
        try:
            answer = self._generator.generate(query=query, context=context, history=self._window(history))
        except GenerationFailed:
            raise
        except Exception as exc:
            raise GenerationFailed(f"Generation failed: {exc}") from exc
        self._record_generation(time.perf_counter() - start, answer, streamed=False)
        return answer

    def _record_generation(self, duration: float, answer: GeneratedAnswer, *, streamed: bool) -> None:
        PipelineMetrics.observe_generation(duration)
        self._logger.info(
            "generation.complete",
            duration_seconds=duration,
            citation_count=len(answer.citations),
            streamed=streamed,
        )

    def _window(self, history: Sequence[Message]) -> List[Message]:
        window = self._config.history_window
        return list(history)[-window:] if window > 0 else []

    def _envelope(self, answer: GeneratedAnswer, *, query: str, session_id: str, has_context: bool) -> QueryResult:
        return QueryResult(
            text=answer.text,
            citations=tuple(answer.citations),
            query=query,
            session_id=session_id,
            timestamp=utc_now_iso(),
            cached=False,
            note=None if has_context else NO_CONTEXT_NOTE,
        )

    def _store(self, key: str, result: QueryResult) -> None:
        # Stored copies are marked cached so every later hit returns identical bytes.
        self._cache.set(key, replace(result, cached=True).to_dict(), ttl=self._config.cache_ttl_seconds)


def _guard_stream(generation: GenerationStream) -> GenerationStream:
    """Re-wrap unexpected errors raised mid-stream as :class:`GenerationFailed`."""

    def fragments() -> Iterator[str]:
        try:
            yield from generation
        except GenerationFailed:
            raise
        except Exception as exc:
            raise GenerationFailed(f"Generation stream failed: {exc}") from exc

    return GenerationStream(fragments(), generation.citations)
