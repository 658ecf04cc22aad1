"""
Cache backends for the MissionFlow CacheService.

- `MemoryCacheBackend`: aiocache `SimpleMemoryCache`; entries expire via `ttl=`.
- `RedisCacheBackend`: `redis.asyncio` client storing JSON strings via SETEX.

Both satisfy the `CacheBackend` protocol so handlers never know which one is
configured.
"""

from __future__ import annotations

import json
from typing import Any, Optional, Protocol

from aiocache import SimpleMemoryCache
from redis.asyncio import Redis

from missionflow.core.config.config import Config


class CacheBackend(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_prefix(self, prefix: str) -> None: ...

    async def close(self) -> None: ...


class MemoryCacheBackend:
    """Single-process cache; values are kept as the objects passed in."""

    def __init__(self, cache: Optional[SimpleMemoryCache] = None) -> None:
        self._cache = cache if cache is not None else SimpleMemoryCache()

    async def get(self, key: str) -> Optional[Any]:
        return await self._cache.get(key)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._cache.set(key, value, ttl=ttl_seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self._cache.delete(key))

    async def delete_prefix(self, prefix: str) -> None:
        # the memory backend clears every key starting with `namespace`
        await self._cache.clear(namespace=prefix)

    async def close(self) -> None:
        await self._cache.clear()
        await self._cache.close()


class RedisCacheBackend:
    """Redis-backed cache; values are stored as JSON text."""

    def __init__(self, client: Optional[Redis] = None) -> None:
        self._client = client or Redis.from_url(
            Config.REDIS_URL,
            decode_responses=True,
            socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
        )

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self._client.setex(key, ttl_seconds, json.dumps(value, default=str))

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def delete_prefix(self, prefix: str) -> None:
        async for key in self._client.scan_iter(match=f"{prefix}*"):
            await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()
