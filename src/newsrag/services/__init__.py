"""Service layer orchestrations for NewsRAG."""

from .chat import ChatConfig, ChatService, SessionLocks
from .container import ServiceContainer, build_services
from .generation import (
    GeminiGenerator,
    GenerationBackend,
    GenerationConfig,
    GenerationStream,
    PromptBuilder,
    PromptBuilderConfig,
    TemplateGenerator,
    build_generation_gateway,
)
from .query import QueryConfig, QueryService, QueryStream, extract_keywords, validate_query

__all__ = [
    "ChatConfig",
    "ChatService",
    "GeminiGenerator",
    "GenerationBackend",
    "GenerationConfig",
    "GenerationStream",
    "PromptBuilder",
    "PromptBuilderConfig",
    "QueryConfig",
    "QueryService",
    "QueryStream",
    "ServiceContainer",
    "SessionLocks",
    "TemplateGenerator",
    "build_generation_gateway",
    "build_services",
    "extract_keywords",
    "validate_query",
]
