"""Wiring of gateways, stores and services from settings."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb
from chromadb.api import ClientAPI

from newsrag.cache.sessions import SessionStore
from newsrag.cache.store import QUERY_PREFIX, Cache, InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore
from newsrag.config import Settings, get_settings
from newsrag.embeddings.service import EmbeddingConfig, EmbeddingGateway, build_embedding_gateway
from newsrag.index.store import ChromaVectorIndex
from newsrag.ingestion.service import IngestionConfig, NewsIngestor
from newsrag.metrics.observability import configure_logging
from newsrag.services.chat import ChatConfig, ChatService
from newsrag.services.generation import GenerationBackend, GenerationConfig, build_generation_gateway
from newsrag.services.query import QueryConfig, QueryService


@dataclass(frozen=True)
class ServiceContainer:
    embedder: EmbeddingGateway
    generator: GenerationBackend
    index: ChromaVectorIndex
    kv_store: KeyValueStore
    query_cache: Cache
    sessions: SessionStore
    query_service: QueryService
    chat: ChatService
    ingestor: NewsIngestor


def _build_kv_store(settings: Settings) -> KeyValueStore:
    if settings.cache_backend == "redis":
        return RedisKeyValueStore.from_url(settings.redis_url, password=settings.redis_password)
    return InMemoryKeyValueStore(maxsize=settings.cache_max_entries)


def _build_chroma_client(settings: Settings) -> ClientAPI:
    if settings.chroma_host:
        return chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    if settings.chroma_persist_dir is not None:
        return chromadb.PersistentClient(path=str(settings.chroma_persist_dir))
    return chromadb.EphemeralClient()


def build_services(
    settings: Settings | None = None,
    *,
    chroma_client: ClientAPI | None = None,
    kv_store: KeyValueStore | None = None,
    embedder: EmbeddingGateway | None = None,
    generator: GenerationBackend | None = None,
) -> ServiceContainer:
    """Build every collaborator once; explicit arguments replace the configured ones."""

    settings = settings or get_settings()
    configure_logging()

    embedder = embedder or build_embedding_gateway(
        EmbeddingConfig(
            provider=settings.embedding_provider,
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            api_key=settings.embedding_credential,
            degrade=settings.embedding_degrade,
            device=settings.embedding_device,
        ),
    )
    generator = generator or build_generation_gateway(
        GenerationConfig(
            model=settings.generator_model,
            api_key=settings.generator_credential,
            base_url=settings.generator_base_url,
            temperature=settings.generator_temperature,
            top_k=settings.generator_top_k,
            top_p=settings.generator_top_p,
            max_output_tokens=settings.generator_max_output_tokens,
            timeout_seconds=settings.generator_timeout_seconds,
            history_window=settings.history_window,
        ),
    )
    index = ChromaVectorIndex(
        settings.chroma_collection,
        dim=settings.embedding_dim,
        client=chroma_client or _build_chroma_client(settings),
    )
    kv_store = kv_store or _build_kv_store(settings)
    query_cache = Cache(kv_store, prefix=QUERY_PREFIX, default_ttl=settings.query_cache_ttl_seconds)
    sessions = SessionStore(kv_store, ttl_seconds=settings.session_ttl_seconds)
    query_service = QueryService(
        embedder,
        index,
        generator,
        query_cache,
        QueryConfig(
            top_k=settings.retrieval_top_k,
            score_floor=settings.retrieval_score_floor,
            history_window=settings.history_window,
            cache_ttl_seconds=settings.query_cache_ttl_seconds,
            relevant_limit=settings.relevant_articles_limit,
            relevant_floor=settings.relevant_articles_floor,
            search_limit=settings.search_articles_limit,
            search_floor=settings.search_articles_floor,
        ),
    )
    chat = ChatService(
        sessions,
        query_service,
        ChatConfig(
            history_window=settings.history_window,
            query_min_length=settings.query_min_length,
            query_max_length=settings.query_max_length,
        ),
    )
    ingestor = NewsIngestor(
        embedder,
        index,
        IngestionConfig(
            batch_size=settings.ingestion_batch_size,
            batch_pause_seconds=settings.ingestion_batch_pause_seconds,
            min_title_length=settings.ingestion_min_title_length,
            min_content_length=settings.ingestion_min_content_length,
            max_embed_chars=settings.embedding_max_chars,
            latest_articles_ttl_seconds=settings.latest_articles_ttl_seconds,
        ),
        cache=query_cache,
    )
    return ServiceContainer(
        embedder=embedder,
        generator=generator,
        index=index,
        kv_store=kv_store,
        query_cache=query_cache,
        sessions=sessions,
        query_service=query_service,
        chat=chat,
        ingestor=ingestor,
    )
