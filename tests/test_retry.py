"""Tests for retry contexts and the confidence retry coordinator."""

from __future__ import annotations

import pytest

from conftest import FakeClock
from vision_attrs.catalog.attributes import ExtractionResult
from vision_attrs.errors import ParseError
from vision_attrs.services.retry import ConfidenceRetryCoordinator, RetryContext, RetryPolicy


def _result(confidence: int) -> ExtractionResult:
    return ExtractionResult(schema_id="shirts", schema_version="1", attributes={}, overall_confidence=confidence)


def _coordinator(**kwargs: object) -> ConfidenceRetryCoordinator:
    kwargs.setdefault("rng", lambda: 0.0)
    return ConfidenceRetryCoordinator(RetryPolicy(max_attempts=3), confidence_threshold=70, **kwargs)


def test_retry_delay_grows_and_is_capped() -> None:
    coordinator = ConfidenceRetryCoordinator(
        RetryPolicy(base_delay_ms=1000, max_delay_ms=5000, backoff_multiplier=2, jitter_factor=0.1),
        rng=lambda: 0.0,
    )

    delays = [coordinator.calculate_retry_delay(attempt) for attempt in range(1, 6)]

    assert delays == [1000, 2000, 4000, 5000, 5000]


def test_retry_delay_jitter_is_a_fraction_of_the_exponential() -> None:
    coordinator = ConfidenceRetryCoordinator(RetryPolicy(jitter_factor=0.1), rng=lambda: 1.0)

    assert coordinator.calculate_retry_delay(1) == pytest.approx(1100)
    assert coordinator.calculate_retry_delay(2) == pytest.approx(2200)


def test_retry_delay_bounds_with_random_jitter() -> None:
    coordinator = ConfidenceRetryCoordinator(RetryPolicy(max_delay_ms=30_000))

    for attempt in range(1, 12):
        delay = coordinator.calculate_retry_delay(attempt)
        assert 0 < delay <= 30_000


def test_retry_context_exhausts_at_max_attempts() -> None:
    context = RetryContext(max_attempts=3)

    context.record("TransientError", retryable=True, delay_ms=1000)
    context.record("TransientError", retryable=True, delay_ms=2000)
    assert not context.is_exhausted
    assert context.next_retry_at is not None

    last = context.record("TransientError", retryable=True, delay_ms=4000)

    assert context.is_exhausted
    assert context.total_attempts == 3
    assert last.delay_ms == 0
    assert context.total_delay == 3000
    assert context.next_retry_at is None
    with pytest.raises(RuntimeError):
        context.record("TransientError", retryable=True)


def test_non_retryable_attempt_exhausts_immediately() -> None:
    context = RetryContext(max_attempts=3)

    context.record("AuthError", retryable=False, delay_ms=1000)

    assert context.is_exhausted
    assert context.total_delay == 0
    assert context.attempts[0].attempt_number == 1


def test_acceptable_result_is_returned_without_recording() -> None:
    coordinator = _coordinator()
    coordinator.begin("job")

    decision = coordinator.evaluate("job", _result(85))

    assert not decision.retry
    assert decision.result is not None
    assert decision.result.overall_confidence == 85
    assert not decision.result.low_confidence
    assert decision.context.total_attempts == 0


def test_low_confidence_exhaustion_returns_best_result() -> None:
    coordinator = _coordinator()
    coordinator.begin("job")

    first = coordinator.evaluate("job", _result(40))
    second = coordinator.evaluate("job", _result(55))
    third = coordinator.evaluate("job", _result(30))

    assert first.retry and first.delay_ms == 1000
    assert second.retry and second.delay_ms == 2000
    assert not third.retry
    assert third.exhausted
    assert third.result is not None
    assert third.result.overall_confidence == 55
    assert third.result.low_confidence
    assert [attempt.error_class for attempt in third.context.attempts] == ["LowConfidence"] * 3


def test_parse_failures_share_the_attempt_budget() -> None:
    coordinator = _coordinator()
    coordinator.begin("job")

    coordinator.evaluate("job", _result(50))
    coordinator.record_failure("job", ParseError("bad json"))
    decision = coordinator.record_failure("job", ParseError("still bad"))

    assert decision.exhausted
    assert decision.result is not None
    assert decision.result.overall_confidence == 50
    assert decision.context.attempts[1].error_class == "ParseError"


def test_parse_failures_without_any_result_yield_nothing() -> None:
    coordinator = _coordinator()
    coordinator.begin("job")

    for _ in range(2):
        assert coordinator.record_failure("job", ParseError("bad json")).retry
    decision = coordinator.record_failure("job", ParseError("bad json"))

    assert not decision.retry
    assert decision.result is None
    assert coordinator.best_result("job") is None


def test_prune_and_statistics(clock: FakeClock) -> None:
    coordinator = _coordinator(clock=clock, max_context_age=60)
    coordinator.begin("old")
    coordinator.evaluate("old", _result(10))
    clock.advance(30)
    coordinator.begin("recent")

    stats = coordinator.statistics()
    assert stats["total_contexts"] == 2
    assert stats["active_retries"] == 1
    assert stats["average_attempts"] == 0.5
    assert stats["total_delay"] == 1000

    clock.advance(40)
    assert coordinator.prune() == 1
    assert coordinator.context_for("old") is None
    assert coordinator.context_for("recent") is not None
