"""Content-addressed two-tier cache for extraction results.

The durable tier is Redis; the in-process tier is a bounded dictionary. Redis
problems never fail a request: they are logged and the in-process tier is used
until the connection's reconnect backoff elapses.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from vision_attrs.catalog.attributes import ExtractionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

RESULT_KEY_PREFIX = "result"


def result_cache_key(image_hash: str, schema_id: str, schema_version: str) -> str:
    """Deterministic key over image content and schema identity."""

    digest = hashlib.sha256(f"{image_hash}|{schema_id}|{schema_version}".encode("utf-8")).hexdigest()
    return f"{RESULT_KEY_PREFIX}:{digest}"


@dataclass(slots=True)
class CacheEntry:
    key: str
    value: ExtractionResult
    created_at: float
    expires_at: float
    hit_count: int = 0

    def is_live(self, now: float) -> bool:
        return self.expires_at > now


@dataclass(slots=True)
class TierStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0


class MemoryTier:
    """Bounded in-process tier.

    When an insert pushes the size past ``max_size``, expired entries go
    first; then entries with the lowest ``hit_count / age`` are evicted until
    only ``cleanup_threshold`` entries remain.
    """

    def __init__(
        self,
        max_size: int = 1000,
        cleanup_threshold: int = 800,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if cleanup_threshold > max_size:
            raise ValueError("cleanup_threshold must not exceed max_size")
        self.max_size = max_size
        self.cleanup_threshold = cleanup_threshold
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self.stats = TierStats()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> ExtractionResult | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            if not entry.is_live(now):
                del self._entries[key]
                self.stats.misses += 1
                return None
            entry.hit_count += 1
            self.stats.hits += 1
            return entry.value

    def set(self, key: str, value: ExtractionResult, ttl: float) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = CacheEntry(key=key, value=value, created_at=now, expires_at=now + ttl)
            if len(self._entries) > self.max_size:
                self._cleanup(now)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _cleanup(self, now: float) -> None:
        for key in [key for key, entry in self._entries.items() if not entry.is_live(now)]:
            del self._entries[key]

        excess = len(self._entries) - self.cleanup_threshold
        if excess > 0:
            ranked = sorted(
                self._entries.values(),
                key=lambda entry: (entry.hit_count / max(now - entry.created_at, 1e-3), entry.created_at),
            )
            for entry in ranked[:excess]:
                del self._entries[entry.key]
        logger.info("Memory cache cleaned up. Size: %d/%d", len(self._entries), self.max_size)


class CacheUnavailable(RuntimeError):
    """The durable tier could not serve the operation."""


class RedisConnection:
    """Health-checked Redis handle with its own reconnect backoff.

    After a failure the connection reports ``is_available() == False`` until
    the backoff window has elapsed; the next operation is then a reconnect
    probe.
    """

    def __init__(
        self,
        url: str = "",
        *,
        client: Redis | None = None,
        operation_timeout: float = 0.5,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if client is None and url:
            client = Redis.from_url(
                url,
                socket_timeout=operation_timeout,
                socket_connect_timeout=operation_timeout,
            )
        self._client = client
        self._operation_timeout = operation_timeout
        self._reconnect_base_delay = reconnect_base_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._clock = clock
        self._failures = 0
        self._retry_at = 0.0

    @property
    def configured(self) -> bool:
        return self._client is not None

    def is_available(self) -> bool:
        if self._client is None:
            return False
        return self._failures == 0 or self._clock() >= self._retry_at

    def mark_failed(self, exc: BaseException) -> None:
        self._failures += 1
        delay = min(self._reconnect_base_delay * 2 ** (self._failures - 1), self._reconnect_max_delay)
        self._retry_at = self._clock() + delay
        logger.warning("Redis unavailable (%s); falling back to memory for %.1fs", exc, delay)

    def mark_healthy(self) -> None:
        if self._failures:
            logger.info("Redis connection restored after %d failures", self._failures)
        self._failures = 0
        self._retry_at = 0.0

    async def _run(self, operation: Callable[[Redis], Awaitable[T]]) -> T:
        if not self.is_available() or self._client is None:
            raise CacheUnavailable("Redis is not available.")
        try:
            result = await asyncio.wait_for(operation(self._client), timeout=self._operation_timeout)
        except (RedisError, OSError, asyncio.TimeoutError) as exc:
            self.mark_failed(exc)
            raise CacheUnavailable(str(exc) or type(exc).__name__) from exc
        self.mark_healthy()
        return result

    async def get(self, key: str) -> bytes | None:
        return await self._run(lambda client: client.get(key))

    async def set(self, key: str, value: str, ttl: float) -> None:
        await self._run(lambda client: client.set(key, value, ex=max(1, math.ceil(ttl))))

    async def delete(self, key: str) -> None:
        await self._run(lambda client: client.delete(key))

    async def ping(self) -> bool:
        return bool(await self._run(lambda client: client.ping()))

    async def flush(self) -> None:
        await self._run(lambda client: client.flushdb())

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class ResultCache:
    """Durable tier first, in-process tier as the fallback."""

    def __init__(
        self,
        memory: MemoryTier | None = None,
        durable: RedisConnection | None = None,
        *,
        default_ttl: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
        on_lookup: Callable[[str, bool], None] | None = None,
    ) -> None:
        self.memory = memory or MemoryTier(clock=clock)
        self.durable = durable or RedisConnection()
        self.default_ttl = default_ttl
        self._clock = clock
        self._durable_stats = TierStats()
        self.on_lookup = on_lookup

    make_key = staticmethod(result_cache_key)

    async def get(self, key: str) -> ExtractionResult | None:
        if self.durable.is_available():
            try:
                raw = await self.durable.get(key)
            except CacheUnavailable:
                self._durable_stats.errors += 1
            else:
                value = self._decode(key, raw) if raw is not None else None
                if value is not None:
                    self._durable_stats.hits += 1
                    self._notify("durable", True)
                    return value
                self._durable_stats.misses += 1

        value = self.memory.get(key)
        self._notify("memory", value is not None)
        return value

    async def put(self, key: str, result: ExtractionResult, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        if self.durable.is_available():
            now = self._clock()
            envelope = json.dumps(
                {
                    "value": result.model_dump(mode="json"),
                    "created_at": now,
                    "expires_at": now + ttl,
                    "hit_count": 0,
                },
            )
            try:
                await self.durable.set(key, envelope, ttl)
                return
            except CacheUnavailable:
                self._durable_stats.errors += 1

        self.memory.set(key, result, ttl)

    def _decode(self, key: str, raw: bytes | str) -> ExtractionResult | None:
        try:
            envelope: dict[str, Any] = json.loads(raw)
            if float(envelope["expires_at"]) <= self._clock():
                return None
            return ExtractionResult.model_validate(envelope["value"])
        except (ValueError, KeyError, TypeError, PydanticValidationError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None

    def _notify(self, tier: str, hit: bool) -> None:
        if self.on_lookup is not None:
            self.on_lookup(tier, hit)

    def stats(self) -> dict[str, dict[str, Any]]:
        durable = self._durable_stats
        memory = self.memory.stats
        return {
            "durable": {
                "configured": self.durable.configured,
                "available": self.durable.is_available(),
                "hits": durable.hits,
                "misses": durable.misses,
                "errors": durable.errors,
            },
            "memory": {
                "size": len(self.memory),
                "max_size": self.memory.max_size,
                "hits": memory.hits,
                "misses": memory.misses,
            },
        }

    async def ping(self) -> bool:
        if not self.durable.configured:
            return False
        try:
            return await self.durable.ping()
        except CacheUnavailable:
            return False

    async def clear(self) -> None:
        if self.durable.is_available():
            try:
                await self.durable.flush()
            except CacheUnavailable:
                logger.warning("Failed to clear Redis cache.")
        self.memory.clear()

    async def close(self) -> None:
        await self.durable.close()
