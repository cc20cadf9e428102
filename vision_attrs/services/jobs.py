"""Extraction job records and their state machine."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from vision_attrs.catalog.attributes import ExtractionResult
from vision_attrs.catalog.schema import CategorySchema
from vision_attrs.imgproc.validation import ImagePayload
from vision_attrs.services.retry import RetryContext


class JobStatus(str, Enum):
    """Finite states of an extraction job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidTransition(RuntimeError):
    """Raised when a job is moved along an edge the state machine forbids."""


@dataclass(frozen=True, slots=True)
class JobError:
    error_class: str
    message: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class ExtractionJob:
    """One submission; mutated only by the orchestrator."""

    image: ImagePayload
    schema: CategorySchema
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PENDING
    attempt_count: int = 0
    confidence: int = 0
    result: ExtractionResult | None = None
    error: JobError | None = None
    transport_retry: RetryContext | None = None
    confidence_retry: RetryContext | None = None
    retry_context: RetryContext | None = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    finished_at: datetime | None = None

    @property
    def image_hash(self) -> str:
        return self.image.content_hash

    @property
    def schema_id(self) -> str:
        return self.schema.id

    @property
    def dedup_key(self) -> tuple[str, str]:
        return self.image_hash, self.schema_id

    @property
    def low_confidence(self) -> bool:
        return bool(self.result and self.result.low_confidence)

    def _move(self, status: JobStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(f"Job {self.id}: {self.status.value} -> {status.value} is not allowed.")
        self.status = status
        self.updated_at = _now()
        if status.terminal:
            self.finished_at = self.updated_at
            # Status and dedup only need the hash once the job is done.
            self.image = replace(self.image, data=b"")

    def mark_processing(self) -> None:
        self._move(JobStatus.PROCESSING)

    def start_attempt(self) -> None:
        self.mark_processing()
        self.attempt_count += 1

    def complete(self, result: ExtractionResult, retry_context: RetryContext | None = None) -> None:
        self._move(JobStatus.COMPLETED)
        self.result = result
        self.confidence = result.overall_confidence
        self.retry_context = retry_context

    def fail(self, error_class: str, message: str, retry_context: RetryContext | None = None) -> None:
        self._move(JobStatus.FAILED)
        self.error = JobError(error_class=error_class, message=message)
        self.retry_context = retry_context

    def snapshot(self) -> dict[str, Any]:
        """Read-only view for status polling."""

        payload: dict[str, Any] = {
            "job_id": self.id,
            "status": self.status.value,
            "attempts": self.attempt_count,
            "confidence": self.confidence,
            "low_confidence": self.low_confidence,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.result is not None:
            payload["result"] = self.result.model_dump(mode="json")
        if self.error is not None:
            payload["error"] = {"error_class": self.error.error_class, "message": self.error.message}
        if self.retry_context is not None:
            payload["retry"] = {
                "total_attempts": self.retry_context.total_attempts,
                "total_delay_ms": self.retry_context.total_delay,
                "is_exhausted": self.retry_context.is_exhausted,
            }
        return payload
