"""Result caching."""

from .cache import CacheEntry, MemoryTier, RedisConnection, ResultCache, result_cache_key

__all__ = ["CacheEntry", "MemoryTier", "RedisConnection", "ResultCache", "result_cache_key"]
