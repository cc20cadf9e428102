"""Exception hierarchy shared by every stage of the extraction pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from vision_attrs.services.retry import RetryContext


class ExtractionError(RuntimeError):
    """Base class for pipeline failures.

    ``error_class`` is the stable label reported on failed jobs and in metrics.
    """

    error_class = "ExtractionError"
    retryable = False


class ValidationError(ExtractionError):
    """Raised when the caller supplies a missing or unusable image or schema."""

    error_class = "ValidationError"


class FatalModelError(ExtractionError):
    """Upstream rejected the request in a way retrying cannot fix."""

    error_class = "FatalModelError"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class AuthError(FatalModelError):
    error_class = "AuthError"


class QuotaError(FatalModelError):
    error_class = "QuotaError"


class TransientError(ExtractionError):
    """Timeout, server or network failure; retried by the transport loop."""

    error_class = "TransientError"
    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ModelTimeoutError(TransientError):
    pass


class UpstreamServerError(TransientError):
    pass


class UpstreamRateLimitError(TransientError):
    pass


class NetworkError(TransientError):
    pass


class ModelError(ExtractionError):
    """Raised once transport retries are exhausted; wraps the last cause."""

    def __init__(
        self,
        message: str,
        cause: TransientError,
        retry_context: RetryContext | None = None,
    ) -> None:
        self.cause = cause
        self.retry_context = retry_context
        super().__init__(message)

    @property
    def error_class(self) -> str:  # type: ignore[override]
        return self.cause.error_class


class ParseError(ExtractionError):
    """Raised when the model output is not a usable JSON object."""

    error_class = "ParseError"


class RateLimitExceeded(ExtractionError):
    """Raised when a client exhausts its request window."""

    error_class = "RateLimitExceeded"

    def __init__(self, retry_after_ms: int, message: str = "Rate limit exceeded") -> None:
        self.retry_after_ms = retry_after_ms
        super().__init__(message)
