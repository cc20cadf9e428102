"""Tests for cost estimation."""

from __future__ import annotations

import pytest

from vision_attrs.catalog.attributes import TokenUsage
from vision_attrs.nlp.pricing import estimate_cost


def test_cost_uses_prompt_and_completion_rates() -> None:
    usage = TokenUsage(total_tokens=2000, prompt_tokens=1000, completion_tokens=1000)

    assert estimate_cost("gpt-4o", usage) == pytest.approx(0.0125)


def test_cost_assumes_split_when_only_total_is_known() -> None:
    usage = TokenUsage(total_tokens=1000)

    assert estimate_cost("gpt-4o", usage) == pytest.approx(0.0055)


def test_unknown_model_costs_nothing() -> None:
    assert estimate_cost("local-llava", TokenUsage(total_tokens=5000)) == 0.0
