"""Cache and session storage."""

from .sessions import SessionStore
from .store import (
    QUERY_PREFIX,
    SESSION_PREFIX,
    Cache,
    InMemoryKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)

__all__ = [
    "Cache",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "QUERY_PREFIX",
    "RedisKeyValueStore",
    "SESSION_PREFIX",
    "SessionStore",
]
