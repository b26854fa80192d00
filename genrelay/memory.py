"""Per-chat conversation history with expiry."""
from __future__ import annotations
import asyncio
import json
import logging
import time
from typing import Dict, List, Optional, Protocol, Tuple

from redis.asyncio import Redis

try:
    from .settings import Settings
except ImportError:
    from genrelay.settings import Settings

logger = logging.getLogger(__name__)

History = List[Dict[str, str]]


def memory_key(chat_id: object) -> str:
    return f"memory:{chat_id}"


class MemoryStore(Protocol):
    async def get(self, chat_id: object) -> History: ...

    async def save(self, chat_id: object, history: History) -> None: ...

    async def clear(self, chat_id: object) -> None: ...


class InMemoryHistoryStore:
    def __init__(self, ttl_s: int = 10800, clock=time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._data: Dict[str, Tuple[History, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, chat_id: object) -> History:
        key = memory_key(chat_id)
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                return []
            history, expires_at = item
            if expires_at < self._clock():
                self._data.pop(key, None)
                return []
            return [dict(m) for m in history]

    async def save(self, chat_id: object, history: History) -> None:
        async with self._lock:
            self._data[memory_key(chat_id)] = ([dict(m) for m in history], self._clock() + self.ttl_s)

    async def clear(self, chat_id: object) -> None:
        async with self._lock:
            self._data.pop(memory_key(chat_id), None)


class RedisHistoryStore:
    """Redis backed history; on Redis errors it degrades to the in-memory store."""

    def __init__(self, client: Redis, ttl_s: int = 10800, fallback: Optional[InMemoryHistoryStore] = None) -> None:
        self._client = client
        self.ttl_s = ttl_s
        self._fallback = fallback or InMemoryHistoryStore(ttl_s)

    async def get(self, chat_id: object) -> History:
        try:
            raw = await self._client.get(memory_key(chat_id))
        except Exception as e:
            logger.warning("redis get failed, using local memory: %s", e)
            return await self._fallback.get(chat_id)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("discarding unreadable history for %s", chat_id)
            return []
        return data if isinstance(data, list) else []

    async def save(self, chat_id: object, history: History) -> None:
        try:
            await self._client.set(memory_key(chat_id), json.dumps(history), ex=self.ttl_s)
        except Exception as e:
            logger.warning("redis set failed, using local memory: %s", e)
            await self._fallback.save(chat_id, history)

    async def clear(self, chat_id: object) -> None:
        try:
            await self._client.delete(memory_key(chat_id))
        except Exception as e:
            logger.warning("redis del failed, using local memory: %s", e)
            await self._fallback.clear(chat_id)


def build_memory_store(settings: Settings) -> MemoryStore:
    if settings.redis_url:
        logger.info("using redis conversation memory")
        return RedisHistoryStore(Redis.from_url(settings.redis_url), settings.memory_ttl_s)
    return InMemoryHistoryStore(settings.memory_ttl_s)
