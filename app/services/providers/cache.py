"""Explicit TTL caches for provider responses.

Caches are constructed and passed into the clients that use them; nothing
reaches for a module-level cache. Values must be JSON-serializable.
"""

import json
import time
from collections.abc import Callable
from typing import Any, Protocol

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


class TTLCache(Protocol):
    """Key -> value store with per-entry expiry."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class MemoryTTLCache:
    """In-process cache. Suitable for a single worker or tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._entries[key] = (self._clock() + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisTTLCache:
    """Redis-backed cache shared across workers."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "cache:sharpline"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _get_key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self.redis.get(self._get_key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("cache_entry_corrupt", key=key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.redis.set(self._get_key(key), json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._get_key(key))
