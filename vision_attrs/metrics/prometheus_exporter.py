"""Prometheus exporter helpers."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class ExtractionMetrics:
    """Counters for one orchestrator, registered on an explicit registry."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        self.jobs_total = Counter(
            "extraction_jobs_total",
            "Extraction jobs that reached a terminal state.",
            ["status"],
            registry=self.registry,
        )
        self.low_confidence_total = Counter(
            "extraction_low_confidence_total",
            "Jobs completed with a best-available low-confidence result.",
            registry=self.registry,
        )
        self.cache_lookups_total = Counter(
            "extraction_cache_lookups_total",
            "Result cache lookups by tier and outcome.",
            ["tier", "outcome"],
            registry=self.registry,
        )
        self.model_calls_total = Counter(
            "extraction_model_calls_total",
            "Model invocations by outcome.",
            ["outcome"],
            registry=self.registry,
        )
        self.model_tokens_total = Counter(
            "extraction_model_tokens_total",
            "Tokens consumed by the vision model.",
            registry=self.registry,
        )
        self.rate_limited_total = Counter(
            "extraction_rate_limited_total",
            "Submissions rejected by the rate limiter.",
            registry=self.registry,
        )
        self.attempt_seconds = Histogram(
            "extraction_attempt_seconds",
            "Duration of one extraction attempt (model call plus validation).",
            registry=self.registry,
        )

    def record_cache_lookup(self, tier: str, hit: bool) -> None:
        self.cache_lookups_total.labels(tier=tier, outcome="hit" if hit else "miss").inc()

    def render(self) -> bytes:
        """Serialize the registry in the Prometheus text format."""

        return generate_latest(self.registry)
