"""Vision model invocation with timeout, error classification and transport retry."""

from __future__ import annotations

import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx
import openai
from openai import AsyncOpenAI
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from vision_attrs.catalog.attributes import TokenUsage
from vision_attrs.config.settings import Settings, get_settings
from vision_attrs.errors import (
    AuthError,
    FatalModelError,
    ModelError,
    ModelTimeoutError,
    NetworkError,
    QuotaError,
    TransientError,
    UpstreamRateLimitError,
    UpstreamServerError,
)
from vision_attrs.imgproc.validation import ImagePayload
from vision_attrs.prompts.prompt_builder import SYSTEM_PROMPT
from vision_attrs.services.retry import RetryContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RawResponse:
    """Model text plus token accounting for a single successful call."""

    content: str
    usage: TokenUsage
    model: str


def _is_quota_error(exc: openai.RateLimitError) -> bool:
    code = getattr(exc, "code", None)
    return code == "insufficient_quota" or "quota" in str(exc).lower()


class ModelInvoker:
    """Thin client that sends one prompt + image to an OpenAI-compatible vision model.

    Authentication and quota failures propagate immediately. Timeouts, server
    and network errors are retried up to ``max_retries`` calls in total with a
    ``base_delay * 2 ** (attempt - 1)`` wait, then surface as ``ModelError``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: AsyncOpenAI | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        settings = settings or get_settings()
        if client is None:
            if not settings.openai_api_key:
                raise RuntimeError("OpenAI API key is not configured.")
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url.rstrip("/"),
                timeout=httpx.Timeout(settings.model_timeout),
                max_retries=0,
            )

        self._client = client
        self._sleep = sleep
        self.model = settings.vision_model
        self.max_tokens = settings.vision_max_tokens
        self.temperature = settings.vision_temperature
        self.timeout = settings.model_timeout
        self.max_retries = max(settings.model_max_retries, 1)
        self.base_delay = settings.model_retry_base_delay

    async def invoke(
        self,
        prompt: str,
        image: ImagePayload,
        *,
        context: RetryContext | None = None,
    ) -> RawResponse:
        """Call the model, retrying transient failures."""

        context = context or RetryContext(max_attempts=self.max_retries)

        def _before_sleep(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            delay_ms = (state.next_action.sleep if state.next_action else 0.0) * 1000
            context.record(
                getattr(exc, "error_class", type(exc).__name__),
                retryable=True,
                delay_ms=delay_ms,
                message=str(exc),
            )
            logger.warning(
                "Model call attempt %d/%d failed (%s); retrying in %.1fs",
                state.attempt_number,
                self.max_retries,
                exc,
                delay_ms / 1000,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=2),
            retry=retry_if_exception_type(TransientError),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._call_once(prompt, image)
        except FatalModelError as exc:
            context.record(exc.error_class, retryable=False, message=str(exc))
            logger.error("Model call rejected: %s", exc)
            raise
        except TransientError as exc:
            context.record(exc.error_class, retryable=True, message=str(exc))
            logger.error("Model call failed after %d attempts: %s", context.total_attempts, exc)
            raise ModelError(
                f"Model call failed after {context.total_attempts} attempts: {exc}",
                cause=exc,
                retry_context=context,
            ) from exc
        return response

    async def _call_once(self, prompt: str, image: ImagePayload) -> RawResponse:
        request = self._build_request(prompt, image)
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**request),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ModelTimeoutError(f"Model call exceeded {self.timeout:.0f}s timeout.") from exc
        except openai.APITimeoutError as exc:
            raise ModelTimeoutError("Model request timed out.") from exc
        except (openai.AuthenticationError, openai.PermissionDeniedError) as exc:
            raise AuthError(f"Model service rejected credentials: {exc}", status_code=exc.status_code) from exc
        except openai.RateLimitError as exc:
            if _is_quota_error(exc):
                raise QuotaError(f"Model quota exhausted: {exc}", status_code=exc.status_code) from exc
            raise UpstreamRateLimitError(f"Model service rate limited: {exc}", status_code=exc.status_code) from exc
        except openai.APIStatusError as exc:
            raise UpstreamServerError(
                f"Model service returned {exc.status_code}: {exc}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise NetworkError(f"Could not reach model service: {exc}") from exc
        except httpx.HTTPError as exc:
            raise NetworkError(f"HTTP transport error: {exc}") from exc

        return self._to_raw_response(response)

    def _build_request(self, prompt: str, image: ImagePayload) -> dict[str, Any]:
        encoded = base64.b64encode(image.data).decode("ascii")
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{image.mime_type};base64,{encoded}", "detail": "high"},
                        },
                    ],
                },
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    def _to_raw_response(self, response: Any) -> RawResponse:
        choices = getattr(response, "choices", None) or []
        content = ""
        if choices:
            message = getattr(choices[0], "message", None)
            content = getattr(message, "content", None) or ""
        else:
            logger.warning("Model response has no choices.")

        usage = getattr(response, "usage", None)
        return RawResponse(
            content=content,
            usage=TokenUsage(
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
            model=getattr(response, "model", None) or self.model,
        )

    async def ping(self) -> bool:
        """Return ``True`` if the upstream service responds to a model listing call."""

        models = await self._client.models.list()
        return bool(models.data)

    async def close(self) -> None:
        """Release HTTP resources."""

        await self._client.close()
