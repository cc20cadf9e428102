"""Shared fixtures: schemas, tiny images, a controllable clock and a fake model client."""

from __future__ import annotations

import json
from io import BytesIO
from types import SimpleNamespace
from typing import Any, Callable, Iterator

import pytest
import pytest_mock
from PIL import Image

from vision_attrs.catalog.schema import AllowedValue, AttributeField, CategorySchema, FieldType
from vision_attrs.config.settings import Settings, get_settings


class FakeClock:
    """Manually advanced replacement for ``time.time`` / ``time.monotonic``."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def model_response(
    content: str,
    *,
    total_tokens: int = 120,
    prompt_tokens: int = 100,
    completion_tokens: int = 20,
    model: str = "gpt-4o",
) -> SimpleNamespace:
    """Mimic the attributes of an ``openai`` chat completion object."""

    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(
            total_tokens=total_tokens,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        ),
        model=model,
    )


def answer(values: dict[str, tuple[Any, Any]], **extra: Any) -> str:
    """Serialise ``{key: (value, confidence)}`` into the JSON shape the prompt asks for."""

    payload: dict[str, Any] = {
        key: {"value": value, "confidence": confidence, "reasoning": f"{key} is visible"}
        for key, (value, confidence) in values.items()
    }
    payload.update(extra)
    return json.dumps(payload)


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="test-key",
        model_max_retries=3,
        model_retry_base_delay=1.0,
        confidence_threshold=70,
        retry_max_attempts=3,
        retry_base_delay_ms=1000.0,
        retry_jitter_factor=0.1,
    )


@pytest.fixture
def garment_schema() -> CategorySchema:
    """Three select fields with small controlled vocabularies."""

    return CategorySchema(
        id="shirts",
        version="2",
        name="Shirts",
        fields=(
            AttributeField(
                key="color",
                label="Primary colour",
                type=FieldType.SELECT,
                required=True,
                allowed_values=(AllowedValue("RED", "Red"), AllowedValue("BLU", "Blue")),
            ),
            AttributeField(
                key="material",
                label="Fabric",
                type=FieldType.SELECT,
                allowed_values=(AllowedValue("COT", "Cotton"), AllowedValue("WOL", "Wool")),
            ),
            AttributeField(
                key="fit",
                label="Fit",
                type=FieldType.SELECT,
                allowed_values=(AllowedValue("SLM", "Slim"), AllowedValue("REG", "Regular")),
            ),
        ),
    )


@pytest.fixture
def mixed_schema() -> CategorySchema:
    return CategorySchema(
        id="trousers",
        fields=(
            AttributeField(
                key="color",
                label="Colour",
                type=FieldType.SELECT,
                allowed_values=(AllowedValue("RED", "Red"), AllowedValue("BLU", "Blue")),
            ),
            AttributeField(key="length_cm", label="Length", type=FieldType.NUMBER),
            AttributeField(key="pattern", label="Pattern", type=FieldType.TEXT),
            AttributeField(key="brand", label="Brand", type=FieldType.TEXT, required=True),
        ),
    )


@pytest.fixture
def make_png() -> Callable[..., bytes]:
    """Return a factory producing small PNG images; distinct colours give distinct hashes."""

    def _make(color: tuple[int, int, int] = (200, 30, 30), size: tuple[int, int] = (4, 4)) -> bytes:
        buffer = BytesIO()
        Image.new("RGB", size, color).save(buffer, format="PNG")
        return buffer.getvalue()

    return _make


@pytest.fixture
def png_bytes(make_png: Callable[..., bytes]) -> bytes:
    return make_png()


@pytest.fixture
def fake_openai(mocker: pytest_mock.MockerFixture) -> Callable[..., Any]:
    """Build an ``AsyncOpenAI``-shaped mock whose completions follow ``side_effect``."""

    def _make(side_effect: Any) -> Any:
        client = mocker.MagicMock()
        client.chat.completions.create = mocker.AsyncMock(side_effect=side_effect)
        client.models.list = mocker.AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(id="gpt-4o")]))
        client.close = mocker.AsyncMock(return_value=None)
        return client

    return _make
