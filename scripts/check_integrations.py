"""Run connectivity checks against the vision model API and Redis."""

from __future__ import annotations

import asyncio
from typing import Iterable

from vision_attrs.config.settings import get_settings
from vision_attrs.integrations import IntegrationCheckResult, run_all_checks
from vision_attrs.monitoring.logging import configure_logging
from vision_attrs.nlp.vision_client import ModelInvoker
from vision_attrs.storage.cache import RedisConnection, ResultCache


def _format_result(result: IntegrationCheckResult) -> str:
    status = "OK  " if result.success else "FAIL"
    return f"[{status}] {result.name}: {result.message}"


def print_results(results: Iterable[IntegrationCheckResult]) -> None:
    for result in results:
        print(_format_result(result))


async def _run() -> list[IntegrationCheckResult]:
    settings = get_settings()
    invoker = ModelInvoker(settings)
    cache = ResultCache(durable=RedisConnection(settings.redis_url))
    try:
        return await run_all_checks(invoker, cache)
    finally:
        await invoker.close()
        await cache.close()


def main() -> None:
    configure_logging()
    print_results(asyncio.run(_run()))


if __name__ == "__main__":
    main()
