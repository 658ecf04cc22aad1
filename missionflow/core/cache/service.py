"""
TTL cache service with observability and graceful degradation.

Purpose
-------
Short-lived memoization for read-mostly data: campaign graph snapshots and
rank ladders. The service is constructed once and injected into the
services that need it; nothing reads a module-level cache.

Features
--------
- Pluggable backend (aiocache in-memory or Redis)
- Versioned key templates for consistent naming
- ConfigManager-driven TTLs per cache type
- Hit/miss/error metrics
- Graceful degradation: a failing backend behaves like a miss and is logged

Key Templates
-------------
- campaign_snapshot: missionflow:v1:campaign:{campaign_id}:snapshot
- rank_ladder:       missionflow:v1:campaign:{campaign_id}:ranks
"""

from __future__ import annotations

import time
from typing import Any, Awaitable, Callable, Dict, Optional

from missionflow.core.cache.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
)
from missionflow.core.config.config import Config
from missionflow.core.config.manager import ConfigManager
from missionflow.core.exceptions import CacheError
from missionflow.core.logging.logger import get_logger

logger = get_logger(__name__)


class CacheService:
    """
    Key/value cache with TTLs resolved per cache type.

    Usage
    -----
    >>> cache = CacheService(MemoryCacheBackend())
    >>> key = cache.key("campaign_snapshot", campaign_id="c-1")
    >>> await cache.set(key, snapshot.to_dict(), cache_type="campaign_snapshot")
    """

    KEY_TEMPLATES = {
        "campaign_snapshot": "missionflow:v1:campaign:{campaign_id}:snapshot",
        "rank_ladder": "missionflow:v1:campaign:{campaign_id}:ranks",
    }

    DEFAULT_TTLS = {
        "campaign_snapshot": 60,
        "rank_ladder": 300,
    }

    def __init__(
        self,
        backend: CacheBackend,
        config_manager: type[ConfigManager] = ConfigManager,
    ) -> None:
        self._backend = backend
        self._config = config_manager
        self._metrics: Dict[str, float] = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "invalidations": 0,
            "errors": 0,
            "total_get_time_ms": 0.0,
        }

    @classmethod
    def from_config(cls) -> CacheService:
        """Build a cache service using the backend selected by CACHE_BACKEND."""
        if Config.CACHE_BACKEND == "redis":
            backend: CacheBackend = RedisCacheBackend()
        else:
            backend = MemoryCacheBackend()
        logger.info(
            "CacheService configured",
            extra={"backend": type(backend).__name__},
        )
        return cls(backend)

    # =========================================================================
    # KEYS & TTLS
    # =========================================================================

    def key(self, template: str, **kwargs: Any) -> str:
        return self.KEY_TEMPLATES[template].format(**kwargs)

    def ttl_for(self, cache_type: str) -> int:
        default = self.DEFAULT_TTLS.get(cache_type, 60)
        return int(self._config.get(f"cache.ttl.{cache_type}", default))

    # =========================================================================
    # OPERATIONS
    # =========================================================================

    async def get(self, key: str) -> Optional[Any]:
        start = time.perf_counter()
        try:
            value = await self._backend.get(key)
        except Exception as exc:
            self._record_error(CacheError("get", key, exc))
            return None
        finally:
            self._metrics["total_get_time_ms"] += (time.perf_counter() - start) * 1000

        if value is None:
            self._metrics["misses"] += 1
            return None

        self._metrics["hits"] += 1
        return value

    async def set(
        self,
        key: str,
        value: Any,
        *,
        cache_type: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ) -> bool:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_for(cache_type or "")
        try:
            await self._backend.set(key, value, ttl)
        except Exception as exc:
            self._record_error(CacheError("set", key, exc))
            return False

        self._metrics["sets"] += 1
        return True

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        cache_type: str,
    ) -> Any:
        """Return the cached value, or call `loader` and cache its result."""
        cached = await self.get(key)
        if cached is not None:
            return cached

        value = await loader()
        if value is not None:
            await self.set(key, value, cache_type=cache_type)
        return value

    async def delete(self, key: str) -> bool:
        try:
            removed = await self._backend.delete(key)
        except Exception as exc:
            self._record_error(CacheError("delete", key, exc))
            return False

        self._metrics["invalidations"] += 1
        return removed

    async def invalidate_prefix(self, prefix: str) -> bool:
        try:
            await self._backend.delete_prefix(prefix)
        except Exception as exc:
            self._record_error(CacheError("invalidate_prefix", prefix, exc))
            return False

        self._metrics["invalidations"] += 1
        logger.debug("Cache prefix invalidated", extra={"prefix": prefix})
        return True

    async def invalidate_campaign(self, campaign_id: str) -> bool:
        return await self.invalidate_prefix(f"missionflow:v1:campaign:{campaign_id}:")

    async def close(self) -> None:
        await self._backend.close()

    # =========================================================================
    # METRICS
    # =========================================================================

    def _record_error(self, error: CacheError) -> None:
        self._metrics["errors"] += 1
        logger.warning(
            "Cache backend failure; treating as miss",
            extra={
                "cache_operation": error.operation,
                "cache_key": error.cache_key,
                "error": error.details.get("error"),
                "error_type": error.details.get("error_type"),
            },
        )

    def get_hit_rate(self) -> float:
        total = self._metrics["hits"] + self._metrics["misses"]
        if total == 0:
            return 0.0
        return round(self._metrics["hits"] / total * 100, 2)

    def get_metrics(self) -> Dict[str, Any]:
        return {**self._metrics, "hit_rate": self.get_hit_rate()}
