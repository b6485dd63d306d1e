"""Short-lived key/value cache with pluggable backends.

Values are JSON documents. ``InMemoryCacheBackend`` suits a single process and
tests; ``RedisCacheBackend`` shares entries across workers and lets Redis
expire them.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from redis.asyncio import Redis

from ticketsale_api.core.settings import settings


class CacheBackend(Protocol):
    """Protocol implemented by cache backends."""

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` when missing or expired."""

    async def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:
        """Store ``value`` for ``ttl_seconds``."""

    async def delete(self, key: str) -> None:
        """Forget ``key`` if present."""

    async def sweep(self) -> int:
        """Drop expired entries and return how many were removed."""


@dataclass(slots=True)
class _CacheEntry:
    value: Any
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class InMemoryCacheBackend:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, _CacheEntry] = {}
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    async def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        # Stored as a JSON round trip so callers never share mutable state with the cache.
        self._entries[key] = _CacheEntry(
            value=json.loads(json.dumps(value)),
            expires_at=self._clock() + ttl_seconds,
        )

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_valid(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend:
    def __init__(self, redis_client: Redis | None = None, *, namespace: str = "ticketsale:cache") -> None:
        self._redis = redis_client or Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, *, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        await self._redis.set(self._key(key), json.dumps(value), ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def sweep(self) -> int:
        # Redis expires keys itself.
        return 0


def build_cache_backend(backend: str | None = None) -> CacheBackend:
    selected = backend or settings.cache_backend
    if selected == "memory":
        return InMemoryCacheBackend()
    if selected == "redis":
        return RedisCacheBackend()
    raise ValueError(f"Unknown cache backend: {selected}")
