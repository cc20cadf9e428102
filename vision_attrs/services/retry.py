"""Attempt tracking shared by transport retries and confidence re-extraction."""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from vision_attrs.catalog.attributes import ExtractionResult
from vision_attrs.errors import ExtractionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff configuration for one retry loop."""

    max_attempts: int = 3
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 30_000.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1


@dataclass(frozen=True, slots=True)
class RetryAttempt:
    attempt_number: int
    timestamp: datetime
    error_class: str
    delay_ms: float
    retryable: bool
    message: str = ""


@dataclass(slots=True)
class RetryContext:
    """History of the attempts made by one retry loop."""

    max_attempts: int
    attempts: list[RetryAttempt] = field(default_factory=list)
    total_delay: float = 0.0
    is_exhausted: bool = False
    next_retry_at: datetime | None = None
    last_attempt_at: datetime | None = None

    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    def record(
        self,
        error_class: str,
        *,
        retryable: bool,
        delay_ms: float = 0.0,
        message: str = "",
    ) -> RetryAttempt:
        """Append an attempt; marks the context exhausted when no retry follows."""

        if self.is_exhausted:
            raise RuntimeError("Cannot record an attempt on an exhausted retry context.")

        now = datetime.now(timezone.utc)
        attempt_number = self.total_attempts + 1
        will_retry = retryable and attempt_number < self.max_attempts
        attempt = RetryAttempt(
            attempt_number=attempt_number,
            timestamp=now,
            error_class=error_class,
            delay_ms=delay_ms if will_retry else 0.0,
            retryable=retryable,
            message=message,
        )
        self.attempts.append(attempt)
        self.last_attempt_at = now

        if will_retry:
            self.total_delay += attempt.delay_ms
            self.next_retry_at = now + timedelta(milliseconds=attempt.delay_ms)
        else:
            self.is_exhausted = True
            self.next_retry_at = None
        return attempt


@dataclass(frozen=True, slots=True)
class ConfidenceDecision:
    """What the orchestrator should do after an attempt."""

    retry: bool
    delay_ms: float
    result: ExtractionResult | None
    context: RetryContext

    @property
    def exhausted(self) -> bool:
        return self.context.is_exhausted


@dataclass(slots=True)
class _Tracked:
    context: RetryContext
    best: ExtractionResult | None = None
    touched_at: float = 0.0


class ConfidenceRetryCoordinator:
    """Decides whether a completed attempt is good enough or should be repeated.

    Low-confidence results and unparsable responses feed the same attempt
    counter. Once it reaches ``policy.max_attempts`` the best result seen so
    far is returned, tagged as low confidence.
    """

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        confidence_threshold: int = 70,
        max_context_age: float = 3600.0,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = policy or RetryPolicy()
        self.confidence_threshold = confidence_threshold
        self._max_context_age = max_context_age
        self._rng = rng
        self._clock = clock
        self._tracked: dict[str, _Tracked] = {}
        self._lock = threading.Lock()

    def calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with additive jitter, capped at ``max_delay_ms``."""

        policy = self.policy
        exponential = policy.base_delay_ms * policy.backoff_multiplier ** max(attempt - 1, 0)
        jitter = exponential * policy.jitter_factor * self._rng()
        return min(exponential + jitter, policy.max_delay_ms)

    def is_acceptable(self, result: ExtractionResult) -> bool:
        return result.overall_confidence >= self.confidence_threshold

    def begin(self, job_id: str) -> RetryContext:
        """Start tracking a job, pruning contexts that have aged out."""

        self.prune()
        with self._lock:
            tracked = _Tracked(
                context=RetryContext(max_attempts=self.policy.max_attempts),
                touched_at=self._clock(),
            )
            self._tracked[job_id] = tracked
            return tracked.context

    def context_for(self, job_id: str) -> RetryContext | None:
        tracked = self._tracked.get(job_id)
        return tracked.context if tracked else None

    def evaluate(self, job_id: str, result: ExtractionResult) -> ConfidenceDecision:
        """Accept ``result`` or record a low-confidence condition."""

        tracked = self._get(job_id)
        if tracked.best is None or result.overall_confidence > tracked.best.overall_confidence:
            tracked.best = result

        if self.is_acceptable(result):
            return ConfidenceDecision(retry=False, delay_ms=0.0, result=result, context=tracked.context)

        return self._record(
            tracked,
            error_class="LowConfidence",
            message=f"Low confidence result: {result.overall_confidence}%",
        )

    def record_failure(self, job_id: str, error: ExtractionError) -> ConfidenceDecision:
        """Record an attempt that produced no usable result (e.g. a parse failure)."""

        return self._record(self._get(job_id), error_class=error.error_class, message=str(error))

    def best_result(self, job_id: str) -> ExtractionResult | None:
        tracked = self._tracked.get(job_id)
        return tracked.best if tracked else None

    def prune(self, max_age: float | None = None) -> int:
        """Forget contexts untouched for longer than ``max_age`` seconds."""

        cutoff = self._clock() - (self._max_context_age if max_age is None else max_age)
        with self._lock:
            stale = [job_id for job_id, item in self._tracked.items() if item.touched_at < cutoff]
            for job_id in stale:
                del self._tracked[job_id]
        if stale:
            logger.debug("Pruned %d retry contexts", len(stale))
        return len(stale)

    def statistics(self) -> dict[str, float]:
        contexts = [item.context for item in self._tracked.values()]
        return {
            "active_retries": sum(1 for c in contexts if not c.is_exhausted and c.next_retry_at),
            "total_contexts": len(contexts),
            "exhausted_contexts": sum(1 for c in contexts if c.is_exhausted),
            "average_attempts": (
                sum(c.total_attempts for c in contexts) / len(contexts) if contexts else 0.0
            ),
            "total_delay": sum(c.total_delay for c in contexts),
        }

    def _get(self, job_id: str) -> _Tracked:
        tracked = self._tracked.get(job_id)
        if tracked is None:
            self.begin(job_id)
            tracked = self._tracked[job_id]
        tracked.touched_at = self._clock()
        return tracked

    def _record(self, tracked: _Tracked, *, error_class: str, message: str) -> ConfidenceDecision:
        context = tracked.context
        attempt_number = context.total_attempts + 1
        delay_ms = self.calculate_retry_delay(attempt_number)
        with self._lock:
            context.record(error_class, retryable=True, delay_ms=delay_ms, message=message)

        if not context.is_exhausted:
            logger.warning("%s on attempt %d; retrying in %.0fms", message, attempt_number, delay_ms)
            return ConfidenceDecision(retry=True, delay_ms=delay_ms, result=None, context=context)

        best = tracked.best
        if best is not None and not self.is_acceptable(best):
            best = best.model_copy(update={"low_confidence": True})
        logger.warning(
            "Attempts exhausted after %d tries; best confidence %s",
            context.total_attempts,
            best.overall_confidence if best else "n/a",
        )
        return ConfidenceDecision(retry=False, delay_ms=0.0, result=best, context=context)
