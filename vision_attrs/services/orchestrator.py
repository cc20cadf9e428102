"""End-to-end extraction job lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from openai import AsyncOpenAI
from redis.asyncio import Redis

from vision_attrs.catalog.attributes import ExtractionResult
from vision_attrs.catalog.schema import CategorySchema, SchemaProvider
from vision_attrs.config.settings import Settings, get_settings
from vision_attrs.errors import FatalModelError, ModelError, ParseError, RateLimitExceeded, ValidationError
from vision_attrs.imgproc.validation import DEFAULT_MAX_IMAGE_BYTES, inspect_image
from vision_attrs.metrics.prometheus_exporter import ExtractionMetrics
from vision_attrs.nlp.pricing import estimate_cost
from vision_attrs.nlp.response_validator import ResponseValidator
from vision_attrs.nlp.vision_client import ModelInvoker
from vision_attrs.prompts.prompt_builder import SchemaPromptBuilder
from vision_attrs.services.jobs import ExtractionJob, JobStatus
from vision_attrs.services.rate_limiter import RateLimiter, RateLimitInfo
from vision_attrs.services.retry import ConfidenceDecision, ConfidenceRetryCoordinator, RetryContext, RetryPolicy
from vision_attrs.storage.cache import MemoryTier, RedisConnection, ResultCache

logger = logging.getLogger(__name__)


class ExtractionOrchestrator:
    """Runs extraction jobs asynchronously and exposes their status for polling.

    Each job makes at most one model call at a time. Across jobs, calls are
    bounded by ``concurrency`` worker slots; a job gives its slot back while
    it waits out a confidence backoff.

    An abandoned job is never cancelled mid-call: the call runs to completion
    so its result still warms the cache.
    """

    def __init__(
        self,
        invoker: ModelInvoker,
        cache: ResultCache,
        rate_limiter: RateLimiter,
        *,
        prompt_builder: SchemaPromptBuilder | None = None,
        validator: ResponseValidator | None = None,
        coordinator: ConfidenceRetryCoordinator | None = None,
        schema_provider: SchemaProvider | None = None,
        metrics: ExtractionMetrics | None = None,
        concurrency: int = 3,
        result_ttl: float | None = None,
        max_image_bytes: int = DEFAULT_MAX_IMAGE_BYTES,
        job_retention: float = 3600.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.invoker = invoker
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.prompt_builder = prompt_builder or SchemaPromptBuilder()
        self.validator = validator or ResponseValidator()
        self.coordinator = coordinator or ConfidenceRetryCoordinator()
        self.schema_provider = schema_provider
        self.metrics = metrics or ExtractionMetrics()
        self._result_ttl = result_ttl
        self._max_image_bytes = max_image_bytes
        self._sleep = sleep
        self._job_retention = job_retention
        self._clock = clock
        self._slots = asyncio.Semaphore(concurrency)
        self._jobs: dict[str, ExtractionJob] = {}
        self._in_flight: dict[tuple[str, str], str] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._finished: dict[str, float] = {}

        if self.cache.on_lookup is None:
            self.cache.on_lookup = self.metrics.record_cache_lookup

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: AsyncOpenAI | None = None,
        redis_client: Redis | None = None,
        schema_provider: SchemaProvider | None = None,
    ) -> "ExtractionOrchestrator":
        """Wire every collaborator from configuration."""

        settings = settings or get_settings()
        cache = ResultCache(
            MemoryTier(settings.memory_cache_max_size, settings.memory_cache_cleanup_threshold),
            RedisConnection(settings.redis_url, client=redis_client),
            default_ttl=settings.result_cache_ttl,
        )
        coordinator = ConfidenceRetryCoordinator(
            RetryPolicy(
                max_attempts=settings.retry_max_attempts,
                base_delay_ms=settings.retry_base_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
                backoff_multiplier=settings.retry_backoff_multiplier,
                jitter_factor=settings.retry_jitter_factor,
            ),
            confidence_threshold=settings.confidence_threshold,
            max_context_age=settings.retry_context_max_age,
        )
        return cls(
            ModelInvoker(settings, client=client),
            cache,
            RateLimiter(
                window=settings.rate_limit_window,
                max_requests=settings.rate_limit_max_requests,
                block_duration=settings.rate_limit_block,
                max_keys=settings.rate_limit_max_keys,
            ),
            prompt_builder=SchemaPromptBuilder(
                max_fields=settings.prompt_max_fields,
                max_allowed_values=settings.prompt_max_allowed_values,
                high_water=settings.prompt_cache_high_water,
                low_water=settings.prompt_cache_low_water,
            ),
            coordinator=coordinator,
            schema_provider=schema_provider,
            concurrency=settings.worker_concurrency,
            result_ttl=settings.result_cache_ttl,
            max_image_bytes=settings.max_image_bytes,
            job_retention=settings.job_retention,
        )

    # Caller-facing contract

    async def submit(
        self,
        image_bytes: bytes | None,
        schema: CategorySchema | None,
        *,
        client_key: str = "anonymous",
    ) -> str:
        """Queue an extraction and return its job id.

        An identical in-flight submission (same image content and schema id)
        returns the existing job id instead of starting a second job.
        Input is validated before the rate limiter is consulted.
        """

        if schema is None:
            raise ValidationError("Schema is missing.")
        schema.check()
        image = inspect_image(image_bytes, self._max_image_bytes)
        self.admit(client_key)

        existing = self._in_flight.get((image.content_hash, schema.id))
        if existing is not None:
            logger.info("Reusing in-flight job %s for schema %s", existing, schema.id)
            return existing

        self.prune_jobs()
        job = ExtractionJob(image=image, schema=schema)
        self._jobs[job.id] = job
        self._in_flight[job.dedup_key] = job.id
        task = asyncio.create_task(self._run(job), name=f"extraction-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        logger.info("Job %s queued for schema %s (image %s)", job.id, schema.id, image.content_hash[:12])
        return job.id

    async def submit_by_id(self, image_bytes: bytes | None, schema_id: str, *, client_key: str = "anonymous") -> str:
        """Resolve ``schema_id`` through the schema provider and submit."""

        if self.schema_provider is None:
            raise ValidationError("No schema provider is configured.")
        return await self.submit(image_bytes, self.schema_provider.get_schema(schema_id), client_key=client_key)

    def admit(self, client_key: str) -> RateLimitInfo:
        try:
            return self.rate_limiter.check(client_key)
        except RateLimitExceeded:
            self.metrics.rate_limited_total.inc()
            raise

    def get_job(self, job_id: str) -> ExtractionJob | None:
        return self._jobs.get(job_id)

    def get_status(self, job_id: str) -> dict[str, Any] | None:
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    async def wait(self, job_id: str, timeout: float | None = None) -> ExtractionJob:
        """Block until the job is terminal; for in-process callers and tests."""

        job = self._jobs[job_id]
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return job

    def queue_status(self) -> dict[str, int]:
        counts = {status: 0 for status in JobStatus}
        for job in self._jobs.values():
            counts[job.status] += 1
        return {
            "pending_jobs": counts[JobStatus.PENDING],
            "processing_jobs": counts[JobStatus.PROCESSING],
            "completed_jobs": counts[JobStatus.COMPLETED],
            "failed_jobs": counts[JobStatus.FAILED],
            "total_jobs": len(self._jobs),
        }

    def prune_jobs(self) -> int:
        """Forget terminal jobs that finished more than ``job_retention`` seconds ago."""

        cutoff = self._clock() - self._job_retention
        expired = [job_id for job_id, finished in self._finished.items() if finished < cutoff]
        for job_id in expired:
            del self._finished[job_id]
            self._jobs.pop(job_id, None)
        if expired:
            logger.info("Evicted %d finished jobs", len(expired))
        return len(expired)

    async def close(self) -> None:
        """Let in-flight jobs finish, then release network resources."""

        if self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)
        await self.invoker.close()
        await self.cache.close()

    # Job processing

    async def _run(self, job: ExtractionJob) -> None:
        try:
            await self._process(job)
        except Exception:
            logger.exception("Job %s crashed", job.id)
            if not job.status.terminal:
                job.fail("InternalError", "Unexpected error while processing the job.", job.retry_context)
                self.metrics.jobs_total.labels(status=JobStatus.FAILED.value).inc()
        finally:
            self._in_flight.pop(job.dedup_key, None)
            if job.status.terminal:
                self._finished[job.id] = self._clock()

    async def _process(self, job: ExtractionJob) -> None:
        schema = job.schema
        key = self.cache.make_key(job.image_hash, schema.id, schema.version)

        async with self._slots:
            job.mark_processing()
            cached = await self.cache.get(key)
        if cached is not None:
            logger.info("Job %s served from cache", job.id)
            self._complete(job, cached.model_copy(update={"from_cache": True}), None)
            return

        prompt = self.prompt_builder.build_prompt(schema)
        job.confidence_retry = self.coordinator.begin(job.id)
        started = time.monotonic()

        while True:
            transport = RetryContext(max_attempts=self.invoker.max_retries)
            job.transport_retry = transport

            async with self._slots:
                job.start_attempt()
                try:
                    result = await self._attempt(job, prompt, transport, started)
                except FatalModelError as exc:
                    self.metrics.model_calls_total.labels(outcome="fatal").inc()
                    self._fail(job, exc.error_class, str(exc), transport)
                    return
                except ModelError as exc:
                    self.metrics.model_calls_total.labels(outcome="exhausted").inc()
                    best = self.coordinator.best_result(job.id)
                    if best is None:
                        self._fail(job, exc.error_class, str(exc), transport)
                        return
                    decision = ConfidenceDecision(
                        retry=False,
                        delay_ms=0.0,
                        result=best.model_copy(update={"low_confidence": True}),
                        context=transport,
                    )
                except ParseError as exc:
                    decision = self.coordinator.record_failure(job.id, exc)
                else:
                    decision = self.coordinator.evaluate(job.id, result)

            if not decision.retry:
                await self._finish(job, key, decision)
                return

            # Backoff holds no worker slot.
            await self._sleep(decision.delay_ms / 1000)

    async def _attempt(
        self,
        job: ExtractionJob,
        prompt: str,
        transport: RetryContext,
        started: float,
    ) -> ExtractionResult:
        with self.metrics.attempt_seconds.time():
            raw = await self.invoker.invoke(prompt, job.image, context=transport)
            self.metrics.model_calls_total.labels(outcome="ok").inc()
            self.metrics.model_tokens_total.inc(raw.usage.total_tokens)
            validated = self.validator.validate(raw.content, job.schema)

        result = ExtractionResult(
            schema_id=job.schema.id,
            schema_version=job.schema.version,
            attributes=validated.attributes,
            overall_confidence=validated.overall_confidence,
            model=raw.model,
            usage=raw.usage,
            cost_usd=estimate_cost(raw.model, raw.usage),
            attempts=job.attempt_count,
            processing_ms=(time.monotonic() - started) * 1000,
        )
        logger.info(
            "Job %s attempt %d: confidence %d, %d tokens",
            job.id,
            job.attempt_count,
            result.overall_confidence,
            raw.usage.total_tokens,
        )
        return result

    async def _finish(self, job: ExtractionJob, key: str, decision: ConfidenceDecision) -> None:
        if decision.result is None:
            last = decision.context.attempts[-1] if decision.context.attempts else None
            self._fail(
                job,
                last.error_class if last else "ParseError",
                last.message if last else "No usable result.",
                decision.context,
            )
            return

        final = decision.result.model_copy(
            update={"attempts": job.attempt_count, "retry_delay_ms": decision.context.total_delay},
        )
        await self.cache.put(key, final, self._result_ttl)
        self._complete(job, final, decision.context)

    def _complete(self, job: ExtractionJob, result: ExtractionResult, context: RetryContext | None) -> None:
        job.complete(result, context)
        self.metrics.jobs_total.labels(status=JobStatus.COMPLETED.value).inc()
        if result.low_confidence:
            self.metrics.low_confidence_total.inc()
            logger.warning("Job %s completed with low confidence %d", job.id, result.overall_confidence)
        else:
            logger.info("Job %s completed with confidence %d", job.id, result.overall_confidence)

    def _fail(self, job: ExtractionJob, error_class: str, message: str, context: RetryContext | None) -> None:
        job.fail(error_class, message, context)
        self.metrics.jobs_total.labels(status=JobStatus.FAILED.value).inc()
        logger.error("Job %s failed (%s): %s", job.id, error_class, message)
