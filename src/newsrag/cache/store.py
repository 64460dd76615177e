"""Key/value engines and the namespaced JSON cache built on them."""

from __future__ import annotations

import json
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol

import redis
from cachetools import TLRUCache

from newsrag.errors import StoreUnavailable

QUERY_PREFIX = "cache:"
SESSION_PREFIX = "session:"


class KeyValueStore(Protocol):
    """String key/value engine with per-key expiry."""

    def get(self, key: str) -> Optional[str]:
        """Return the stored value or ``None`` when absent or expired."""

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        """Store ``value`` under ``key``; ``ttl`` is in seconds, ``None`` means no expiry."""

    def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    def keys(self, prefix: str = "") -> List[str]:
        """Return every live key starting with ``prefix``. Not meant for hot paths."""


@dataclass(frozen=True)
class _Entry:
    value: str
    ttl: int | None


def _expires_at(_key: str, entry: _Entry, now: float) -> float:
    if entry.ttl is None:
        return math.inf
    return now + entry.ttl


def _check_ttl(ttl: int | None) -> None:
    if ttl is not None and ttl <= 0:
        raise ValueError(f"TTL must be a positive number of seconds, got {ttl}")


class _LiveEntryMap(TLRUCache):
    """TLRU map that only ever drops expired entries.

    Expired entries are purged before a write needs room; if the map is still
    full, the write fails instead of evicting a live key.
    """

    def popitem(self):
        raise StoreUnavailable(f"In-memory store is full ({int(self.maxsize)} live entries)")


class InMemoryKeyValueStore:
    """Process-local engine with per-entry TTL, for development and tests.

    ``maxsize`` bounds the number of live entries. Keys are never evicted before
    their TTL elapses; a write that finds the store full of live entries raises
    :class:`StoreUnavailable`.
    """

    def __init__(self, maxsize: int = 10_000, *, timer: Callable[[], float] = time.monotonic) -> None:
        self._data: TLRUCache = _LiveEntryMap(maxsize=maxsize, ttu=_expires_at, timer=timer)
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._data.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        _check_ttl(ttl)
        with self._lock:
            self._data[key] = _Entry(value=value, ttl=ttl)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self._data.expire()
            return [key for key in list(self._data.keys()) if key.startswith(prefix)]


class RedisKeyValueStore:
    """Redis-backed engine; every operation maps to a single atomic command."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str, *, password: str | None = None) -> "RedisKeyValueStore":
        return cls(redis.Redis.from_url(url, password=password, decode_responses=True))

    def get(self, key: str) -> Optional[str]:
        try:
            value = self._client.get(key)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis GET failed: {exc}") from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        _check_ttl(ttl)
        try:
            if ttl is not None:
                self._client.setex(key, ttl, value)
            else:
                self._client.set(key, value)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis SET failed: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis DEL failed: {exc}") from exc

    def keys(self, prefix: str = "") -> List[str]:
        try:
            found = list(self._client.scan_iter(match=f"{prefix}*"))
        except redis.RedisError as exc:
            raise StoreUnavailable(f"Redis SCAN failed: {exc}") from exc
        return [key.decode("utf-8") if isinstance(key, bytes) else key for key in found]


class Cache:
    """JSON cache confined to one key prefix of a shared engine."""

    def __init__(self, store: KeyValueStore, *, prefix: str = QUERY_PREFIX, default_ttl: int | None = 1800) -> None:
        _check_ttl(default_ttl)
        self._store = store
        self._prefix = prefix
        self._default_ttl = default_ttl

    @property
    def prefix(self) -> str:
        return self._prefix

    def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        effective_ttl = ttl if ttl is not None else self._default_ttl
        self._store.set(self._prefix + key, json.dumps(value), effective_ttl)

    def get(self, key: str) -> Any | None:
        raw = self._store.get(self._prefix + key)
        if raw is None:
            return None
        return json.loads(raw)

    def delete(self, key: str) -> None:
        self._store.delete(self._prefix + key)

    def list_keys(self, prefix: str = "") -> List[str]:
        full = self._store.keys(self._prefix + prefix)
        return [key[len(self._prefix) :] for key in full]

    def clear(self) -> int:
        keys = self.list_keys()
        for key in keys:
            self.delete(key)
        return len(keys)


__all__ = [
    "Cache",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "QUERY_PREFIX",
    "RedisKeyValueStore",
    "SESSION_PREFIX",
]
