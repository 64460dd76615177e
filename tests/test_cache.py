from __future__ import annotations

import pytest
import redis

from newsrag.cache.sessions import SessionStore
from newsrag.cache.store import Cache, InMemoryKeyValueStore, RedisKeyValueStore
from newsrag.errors import StoreUnavailable
from newsrag.models import Message


def test_in_memory_entries_expire_after_ttl(clock):
    store = InMemoryKeyValueStore(timer=clock)
    store.set("a", "1", ttl=10)
    store.set("b", "2")
    clock.advance(9)
    assert store.get("a") == "1"
    clock.advance(2)
    assert store.get("a") is None
    assert store.get("b") == "2"
    assert store.keys() == ["b"]


def test_in_memory_keys_filter_by_prefix():
    store = InMemoryKeyValueStore()
    store.set("cache:x", "1")
    store.set("session:y", "2")
    assert store.keys("cache:") == ["cache:x"]
    store.delete("cache:x")
    store.delete("missing")
    assert store.keys("cache:") == []


def test_cache_namespaces_and_serializes(kv_store):
    queries = Cache(kv_store, prefix="cache:")
    other = Cache(kv_store, prefix="session:")
    queries.set("query:abc", {"text": "hi", "citations": []})
    other.set("s1", {"id": "s1"})

    assert queries.get("query:abc") == {"text": "hi", "citations": []}
    assert queries.get("s1") is None
    assert queries.list_keys() == ["query:abc"]
    assert queries.clear() == 1
    assert other.get("s1") == {"id": "s1"}


def test_cache_default_ttl_applies(clock):
    cache = Cache(InMemoryKeyValueStore(timer=clock), default_ttl=30)
    cache.set("k", [1, 2])
    clock.advance(31)
    assert cache.get("k") is None


class StubRedis:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.data: dict[str, str] = {}
        self.commands: list[tuple] = []

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def get(self, key):
        self._check()
        value = self.data.get(key)
        return value.encode("utf-8") if value is not None else None

    def set(self, key, value):
        self._check()
        self.commands.append(("set", key))
        self.data[key] = value

    def setex(self, key, ttl, value):
        self._check()
        self.commands.append(("setex", key, ttl))
        self.data[key] = value

    def delete(self, key):
        self._check()
        self.data.pop(key, None)

    def scan_iter(self, match):
        self._check()
        prefix = match.rstrip("*")
        return [key.encode("utf-8") for key in self.data if key.startswith(prefix)]


def test_redis_store_maps_commands():
    client = StubRedis()
    store = RedisKeyValueStore(client)
    store.set("cache:a", "1", ttl=60)
    store.set("cache:b", "2")
    assert client.commands == [("setex", "cache:a", 60), ("set", "cache:b")]
    assert store.get("cache:a") == "1"
    assert sorted(store.keys("cache:")) == ["cache:a", "cache:b"]
    store.delete("cache:a")
    assert store.get("cache:a") is None


def test_redis_errors_become_store_unavailable():
    store = RedisKeyValueStore(StubRedis(fail=True))
    with pytest.raises(StoreUnavailable):
        store.get("k")
    with pytest.raises(StoreUnavailable):
        store.set("k", "v", ttl=5)
    with pytest.raises(StoreUnavailable):
        store.keys()


def test_full_store_never_evicts_live_sessions():
    store = InMemoryKeyValueStore(maxsize=3)
    sessions = SessionStore(store)
    sessions.create_session("s1")
    sessions.append_message("s1", Message(id="m1", role="user", content="hello"))
    queries = Cache(store)

    queries.set("query:0", {"text": "a"}, ttl=1800)
    queries.set("query:1", {"text": "b"}, ttl=1800)
    for n in range(2, 5):
        with pytest.raises(StoreUnavailable):
            queries.set(f"query:{n}", {"text": "c"}, ttl=1800)

    assert [message.id for message in sessions.history("s1")] == ["m1"]


def test_full_store_reclaims_expired_entries(clock):
    store = InMemoryKeyValueStore(maxsize=2, timer=clock)
    store.set("session:s1", "{}", ttl=3600)
    store.set("cache:old", "{}", ttl=10)
    clock.advance(11)
    store.set("cache:new", "{}", ttl=10)
    assert sorted(store.keys()) == ["cache:new", "session:s1"]


def test_non_positive_ttl_rejected(kv_store):
    with pytest.raises(ValueError):
        kv_store.set("k", "v", ttl=0)
    with pytest.raises(ValueError):
        RedisKeyValueStore(StubRedis()).set("k", "v", ttl=-1)
    with pytest.raises(ValueError):
        Cache(kv_store, default_ttl=0)
