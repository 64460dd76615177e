"""Generation backends for NewsRAG."""

from __future__ import annotations

import itertools
import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, List, Mapping, Protocol, Sequence

import httpx

from newsrag.errors import ConfigurationDegraded, GenerationFailed
from newsrag.models import Citation, Document, GeneratedAnswer, Message

LOGGER = logging.getLogger(__name__)

FragmentSink = Callable[[str], None]

_FRAGMENT_RE = re.compile(r"\S+\s*|\s+")

_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

DEGRADED_RESPONSES = (
    "I'm currently running in demo mode. To get AI-powered answers, configure a generation API key.",
    "This is a test response. The assistant is working, but a generation API key is required for full answers.",
    "Demo mode active! Add your API keys to enable AI-powered news analysis and responses.",
    "The system is running successfully. Configure a generation API key to unlock AI answers.",
)


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gemini-1.5-flash"
    api_key: str | None = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    temperature: float = 0.7
    top_k: int = 40
    top_p: float = 0.95
    max_output_tokens: int = 1024
    timeout_seconds: float = 60.0
    history_window: int = 5


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    separator: str = "\n---\n"
    history_window: int = 5


class PromptBuilder:
    """Builds grounded prompts from retrieved context and recent history."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def build_context(self, context: Sequence[Document]) -> str:
        blocks = [
            f"Title: {doc.title}\nContent: {doc.content}\nSource: {doc.source}\nURL: {doc.url}\n"
            for doc in context
        ]
        return self._config.separator.join(blocks)

    def build_history(self, history: Sequence[Message]) -> str:
        window = self._config.history_window
        recent = list(history)[-window:] if window > 0 else []
        return "\n".join(
            f"{'User' if message.role == 'user' else 'Assistant'}: {message.content}" for message in recent
        )

    def build(self, *, query: str, context: Sequence[Document], history: Sequence[Message]) -> str:
        history_text = self.build_history(history)
        history_block = f"Previous conversation:\n{history_text}\n\n" if history_text else ""
        context_text = self.build_context(context) or "(no relevant articles were found)"
        return (
            "You are a helpful news assistant. Answer the user's question accurately and concisely, "
            "using only the news articles below and the conversation history.\n\n"
            f"{history_block}"
            f"Relevant news articles:\n{context_text}\n\n"
            f"User question: {query}\n\n"
            "Answer only from the articles above. If they do not contain the information needed, "
            "say so explicitly. Cite sources when possible."
        )


def citations_from_context(context: Sequence[Document]) -> tuple[Citation, ...]:
    return tuple(Citation.from_document(doc) for doc in context)


def split_fragments(text: str) -> List[str]:
    """Split text into word-sized fragments whose concatenation is ``text``."""

    return _FRAGMENT_RE.findall(text)


class GenerationStream:
    """Single-pass iterator over answer fragments.

    Fragments are forwarded to the optional sink as they are produced. Once the
    iterator is exhausted, :meth:`result` returns the aggregate answer whose
    text is the in-order concatenation of every fragment.
    """

    def __init__(
        self,
        fragments: Iterator[str],
        citations: Sequence[Citation],
        on_fragment: FragmentSink | None = None,
    ) -> None:
        self._fragments = fragments
        self._citations = tuple(citations)
        self._sink = on_fragment
        self._parts: list[str] = []
        self._iterator: Iterator[str] | None = None
        self._finished = False

    def __iter__(self) -> Iterator[str]:
        if self._iterator is not None:
            raise RuntimeError("Generation stream can only be consumed once")
        self._iterator = self._run()
        return self._iterator

    def _run(self) -> Iterator[str]:
        for fragment in self._fragments:
            if not fragment:
                continue
            self._parts.append(fragment)
            if self._sink is not None:
                self._sink(fragment)
            yield fragment
        self._finished = True

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def citations(self) -> tuple[Citation, ...]:
        return self._citations

    def result(self) -> GeneratedAnswer:
        """Drain any remaining fragments and return the aggregate answer."""

        remaining = self._iterator if self._iterator is not None else iter(self)
        for _ in remaining:
            pass
        return GeneratedAnswer(text="".join(self._parts), citations=self._citations)


class GenerationBackend(Protocol):
    """Protocol describing generation behaviour."""

    def generate(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
    ) -> GeneratedAnswer:
        """Return a grounded answer for the query."""

    def stream(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
        on_fragment: FragmentSink | None = None,
    ) -> GenerationStream:
        """Return the answer as a lazy stream of text fragments."""


class TemplateGenerator:
    """Degraded-mode generator cycling through canned disclaimers.

    Citations are still derived from the supplied context, so the answer shape
    is the same as with a live provider.
    """

    def __init__(self, responses: Sequence[str] = DEGRADED_RESPONSES) -> None:
        self._responses = itertools.cycle(tuple(responses))
        self._lock = threading.Lock()

    def _next_response(self) -> str:
        with self._lock:
            return next(self._responses)

    def generate(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
    ) -> GeneratedAnswer:
        return GeneratedAnswer(text=self._next_response(), citations=citations_from_context(context))

    def stream(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
        on_fragment: FragmentSink | None = None,
    ) -> GenerationStream:
        text = self._next_response()
        return GenerationStream(iter(split_fragments(text)), citations_from_context(context), on_fragment)


class GeminiGenerator:
    """Generator calling the Gemini ``generateContent`` REST API."""

    def __init__(
        self,
        config: GenerationConfig,
        *,
        client: httpx.Client | None = None,
        prompt_builder: PromptBuilder | None = None,
    ) -> None:
        if not config.api_key:
            raise ConfigurationDegraded("Generation API key not configured")
        self._config = config
        self._client = client or httpx.Client(base_url=config.base_url, timeout=config.timeout_seconds)
        self._prompt_builder = prompt_builder or PromptBuilder(
            PromptBuilderConfig(history_window=config.history_window),
        )

    def generate(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
    ) -> GeneratedAnswer:
        payload = self._payload(self._prompt_builder.build(query=query, context=context, history=history))
        try:
            response = self._client.post(
                f"/models/{self._config.model}:generateContent",
                params={"key": self._config.api_key},
                json=payload,
            )
            response.raise_for_status()
            text = _candidate_text(response.json())
        except httpx.HTTPStatusError as exc:
            raise GenerationFailed(
                f"Gemini HTTP {exc.response.status_code}: {_error_detail(exc.response)}",
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationFailed(f"Gemini request failed: {exc}") from exc
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            raise GenerationFailed(f"Malformed Gemini response: {exc}") from exc
        return GeneratedAnswer(text=text, citations=citations_from_context(context))

    def stream(
        self,
        *,
        query: str,
        context: Sequence[Document],
        history: Sequence[Message],
        on_fragment: FragmentSink | None = None,
    ) -> GenerationStream:
        payload = self._payload(self._prompt_builder.build(query=query, context=context, history=history))
        return GenerationStream(self._stream_fragments(payload), citations_from_context(context), on_fragment)

    def _stream_fragments(self, payload: Mapping[str, Any]) -> Iterator[str]:
        try:
            with self._client.stream(
                "POST",
                f"/models/{self._config.model}:streamGenerateContent",
                params={"key": self._config.api_key, "alt": "sse"},
                json=payload,
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise GenerationFailed(
                        f"Gemini HTTP {response.status_code}: {_error_detail(response)}",
                    )
                for line in response.iter_lines():
                    if not line.startswith("data: "):
                        continue
                    try:
                        event = json.loads(line[len("data: ") :])
                    except json.JSONDecodeError:
                        LOGGER.debug("Skipping malformed Gemini stream event: %s", line)
                        continue
                    text = _candidate_text(event, strict=False)
                    if text:
                        yield text
        except httpx.HTTPError as exc:
            raise GenerationFailed(f"Gemini stream failed: {exc}") from exc

    def _payload(self, prompt: str) -> dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._config.temperature,
                "topK": self._config.top_k,
                "topP": self._config.top_p,
                "maxOutputTokens": self._config.max_output_tokens,
            },
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"} for category in _SAFETY_CATEGORIES
            ],
        }


def _candidate_text(data: Mapping[str, Any], *, strict: bool = True) -> str:
    try:
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(str(part.get("text", "")) for part in parts)
    except (KeyError, IndexError, TypeError):
        if strict:
            raise
        return ""


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("message", body["error"]))
    return str(body)


def build_generation_gateway(
    config: GenerationConfig | None = None,
    *,
    client: httpx.Client | None = None,
) -> GenerationBackend:
    """Pick the live or degraded generator once, based on configured credentials."""

    config = config or GenerationConfig()
    try:
        generator = GeminiGenerator(config, client=client)
    except ConfigurationDegraded as exc:
        LOGGER.warning("Generation gateway running in degraded mode: %s", exc)
        return TemplateGenerator()
    LOGGER.info("Generation gateway using model %s", config.model)
    return generator
