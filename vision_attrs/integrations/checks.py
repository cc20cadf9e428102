"""Connectivity checks for the upstream model and the durable cache."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from vision_attrs.nlp.vision_client import ModelInvoker
from vision_attrs.storage.cache import ResultCache


@dataclass(slots=True)
class IntegrationCheckResult:
    """Structured result describing the integration check outcome."""

    name: str
    success: bool
    message: str


async def _run_check(
    name: str,
    factory: Callable[[], Awaitable[bool]],
    success_message: str,
) -> IntegrationCheckResult:
    try:
        result = await factory()
    except Exception as exc:
        return IntegrationCheckResult(name=name, success=False, message=str(exc))

    if result:
        return IntegrationCheckResult(name=name, success=True, message=success_message)
    return IntegrationCheckResult(
        name=name,
        success=False,
        message="Service responded with non-success status.",
    )


async def check_model_service(invoker: ModelInvoker) -> IntegrationCheckResult:
    """Ping the vision model API and return the result."""

    return await _run_check(
        name="Vision model",
        factory=invoker.ping,
        success_message="Vision model API is reachable.",
    )


async def check_durable_cache(cache: ResultCache) -> IntegrationCheckResult:
    """Ping Redis; an unconfigured durable tier is reported, not failed loudly."""

    if not cache.durable.configured:
        return IntegrationCheckResult(
            name="Redis",
            success=False,
            message="Durable cache is not configured; using in-process cache only.",
        )
    return await _run_check(
        name="Redis",
        factory=cache.ping,
        success_message="Redis is reachable.",
    )


async def run_all_checks(invoker: ModelInvoker, cache: ResultCache) -> list[IntegrationCheckResult]:
    """Execute all integration checks concurrently."""

    return list(await asyncio.gather(check_model_service(invoker), check_durable_cache(cache)))
