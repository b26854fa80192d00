import json

import pytest

from genrelay.memory import InMemoryHistoryStore, RedisHistoryStore, build_memory_store, memory_key
from genrelay.settings import load_settings


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ex = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.ex[key] = ex

    async def delete(self, key):
        self.data.pop(key, None)


class DownRedis:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ex=None):
        raise ConnectionError("redis down")

    async def delete(self, key):
        raise ConnectionError("redis down")


HISTORY = [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}]


def test_memory_key():
    assert memory_key(42) == "memory:42"
    assert memory_key("42") == memory_key(42)


@pytest.mark.asyncio
async def test_in_memory_store_expires():
    clock = FakeClock()
    store = InMemoryHistoryStore(ttl_s=60, clock=clock)
    await store.save(1, HISTORY)
    got = await store.get(1)
    assert got == HISTORY
    got.append({"role": "user", "content": "mutated"})
    assert await store.get(1) == HISTORY
    clock.now += 61
    assert await store.get(1) == []


@pytest.mark.asyncio
async def test_in_memory_store_clear():
    store = InMemoryHistoryStore()
    await store.save(5, HISTORY)
    await store.clear("5")
    assert await store.get(5) == []


@pytest.mark.asyncio
async def test_redis_store_round_trip_with_ttl():
    client = FakeRedis()
    store = RedisHistoryStore(client, ttl_s=10800)
    await store.save(7, HISTORY)
    assert json.loads(client.data["memory:7"]) == HISTORY
    assert client.ex["memory:7"] == 10800
    assert await store.get(7) == HISTORY
    await store.clear(7)
    assert await store.get(7) == []


@pytest.mark.asyncio
async def test_redis_store_discards_unreadable_history():
    client = FakeRedis()
    client.data["memory:3"] = "{not json"
    assert await RedisHistoryStore(client).get(3) == []


@pytest.mark.asyncio
async def test_redis_errors_fall_back_to_local_memory(caplog):
    store = RedisHistoryStore(DownRedis(), ttl_s=60)
    await store.save(9, HISTORY)
    assert await store.get(9) == HISTORY
    await store.clear(9)
    assert await store.get(9) == []
    assert "redis set failed" in caplog.text


def test_build_memory_store():
    assert isinstance(build_memory_store(load_settings({})), InMemoryHistoryStore)
    store = build_memory_store(load_settings({"REDIS_URL": "redis://localhost:6379/0"}))
    assert isinstance(store, RedisHistoryStore)
