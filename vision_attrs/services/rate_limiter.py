"""Fixed-window admission control protecting the upstream model quota."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from vision_attrs.errors import RateLimitExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitInfo:
    remaining: int
    reset_at: float
    total: int


@dataclass(slots=True)
class _Window:
    started_at: float
    count: int = 0
    blocked_until: float = 0.0


class RateLimiter:
    """Per-key fixed-window counter with an optional block after overflow.

    A key that exceeds ``max_requests`` within ``window`` seconds is rejected
    for ``block_duration`` seconds (or until the window ends when no block is
    configured). Rejections while blocked do not touch the counter.
    """

    def __init__(
        self,
        *,
        window: float = 60.0,
        max_requests: int = 10,
        block_duration: float = 0.0,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window <= 0 or max_requests <= 0:
            raise ValueError("window and max_requests must be positive")
        self.window = window
        self.max_requests = max_requests
        self.block_duration = block_duration
        self.max_keys = max_keys
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def check(self, client_key: str) -> RateLimitInfo:
        """Admit one request for ``client_key`` or raise ``RateLimitExceeded``."""

        now = self._clock()
        with self._lock:
            state = self._windows.get(client_key)

            if state is not None and state.blocked_until > now:
                raise self._reject(client_key, state.blocked_until - now)

            if state is None or now - state.started_at >= self.window:
                state = _Window(started_at=now)
                self._windows[client_key] = state
                if len(self._windows) > self.max_keys:
                    self._evict(now)

            window_end = state.started_at + self.window
            if state.count >= self.max_requests:
                if self.block_duration > 0:
                    state.blocked_until = now + self.block_duration
                    raise self._reject(client_key, self.block_duration)
                raise self._reject(client_key, window_end - now)

            state.count += 1
            return RateLimitInfo(
                remaining=self.max_requests - state.count,
                reset_at=window_end,
                total=self.max_requests,
            )

    def reset(self, client_key: str | None = None) -> None:
        with self._lock:
            if client_key is None:
                self._windows.clear()
            else:
                self._windows.pop(client_key, None)

    def _reject(self, client_key: str, retry_after: float) -> RateLimitExceeded:
        retry_after_ms = max(1, math.ceil(retry_after * 1000))
        logger.info("Rate limit exceeded for %s; retry after %dms", client_key, retry_after_ms)
        return RateLimitExceeded(retry_after_ms)

    def _evict(self, now: float) -> None:
        stale = [
            key
            for key, state in self._windows.items()
            if now - state.started_at >= self.window and state.blocked_until <= now
        ]
        for key in stale:
            del self._windows[key]

        overflow = len(self._windows) - self.max_keys
        if overflow > 0:
            oldest = sorted(self._windows, key=lambda key: self._windows[key].started_at)
            for key in oldest[:overflow]:
                del self._windows[key]
        logger.debug("Rate limiter store trimmed to %d keys", len(self._windows))
