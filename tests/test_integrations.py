"""Tests for external integration connectivity helpers."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Callable

import httpx
import openai
import pytest
import pytest_mock

from vision_attrs.config.settings import Settings
from vision_attrs.integrations.checks import check_durable_cache, check_model_service, run_all_checks
from vision_attrs.nlp.vision_client import ModelInvoker
from vision_attrs.storage.cache import RedisConnection, ResultCache


@pytest.mark.asyncio
async def test_check_model_service_success(settings: Settings, fake_openai: Callable[..., Any]) -> None:
    client = fake_openai([])

    result = await check_model_service(ModelInvoker(settings, client=client))

    assert result.success
    client.models.list.assert_awaited_once()


@pytest.mark.asyncio
async def test_check_model_service_failure(settings: Settings, fake_openai: Callable[..., Any]) -> None:
    client = fake_openai([])
    client.models.list.return_value = SimpleNamespace(data=[])

    result = await check_model_service(ModelInvoker(settings, client=client))

    assert not result.success
    assert "non-success" in result.message.lower()


@pytest.mark.asyncio
async def test_check_model_service_reports_exceptions(settings: Settings, fake_openai: Callable[..., Any]) -> None:
    client = fake_openai([])
    client.models.list.side_effect = openai.APIConnectionError(
        request=httpx.Request("GET", "https://api.test/v1/models"),
    )

    result = await check_model_service(ModelInvoker(settings, client=client))

    assert not result.success
    assert "connection" in result.message.lower()


@pytest.mark.asyncio
async def test_check_durable_cache(mocker: pytest_mock.MockerFixture) -> None:
    redis_client = mocker.AsyncMock()
    redis_client.ping.return_value = True

    configured = await check_durable_cache(ResultCache(durable=RedisConnection(client=redis_client)))
    missing = await check_durable_cache(ResultCache())

    assert configured.success
    assert not missing.success
    assert "not configured" in missing.message


@pytest.mark.asyncio
async def test_run_all_checks(settings: Settings, fake_openai: Callable[..., Any]) -> None:
    results = await run_all_checks(ModelInvoker(settings, client=fake_openai([])), ResultCache())

    assert [result.name for result in results] == ["Vision model", "Redis"]
