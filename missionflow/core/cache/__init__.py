"""TTL caching for read-mostly engine data."""

from missionflow.core.cache.backends import (
    CacheBackend,
    MemoryCacheBackend,
    RedisCacheBackend,
)
from missionflow.core.cache.service import CacheService

__all__ = [
    "CacheBackend",
    "CacheService",
    "MemoryCacheBackend",
    "RedisCacheBackend",
]
