"""Tests for model output parsing, vocabulary matching and confidence scoring."""

from __future__ import annotations

import json

import pytest

from conftest import answer
from vision_attrs.catalog.matching import match_allowed_value, similarity
from vision_attrs.catalog.schema import AllowedValue, CategorySchema
from vision_attrs.errors import ParseError
from vision_attrs.nlp.response_validator import (
    ResponseValidator,
    normalize_confidence,
    overall_confidence,
    parse_payload,
)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0.85, 85),
        (120, 100),
        (-5, 0),
        (1, 100),
        (0.5, 50),
        (2, 2),
        (72.5, 73),
        ("85%", 85),
        ("0.9", 90),
        ("high", 0),
        (None, 0),
        (True, 0),
    ],
)
def test_normalize_confidence(raw: object, expected: int) -> None:
    assert normalize_confidence(raw) == expected


def test_overall_confidence_ignores_zero_scores() -> None:
    assert overall_confidence([80, 0, 90]) == 85
    assert overall_confidence([0, 0]) == 0
    assert overall_confidence([]) == 0


def test_similarity_rules() -> None:
    assert similarity("blue", "blue") == 1.0
    assert similarity("blu", "blue") > 0.8
    assert similarity("abc", "xyz") == 0.0
    assert similarity("", "blue") == 0.0
    # Character sets only: anagrams look identical.
    assert similarity("tops", "stop") == 1.0


def test_match_allowed_value_prefers_exact_then_case_insensitive() -> None:
    allowed = [AllowedValue("BLU", "Blue"), AllowedValue("blu", "Light blue")]

    assert match_allowed_value("blu", allowed) == ("blu", 1.0)
    assert match_allowed_value("BLUE", allowed) == ("BLU", 1.0)
    assert match_allowed_value("light BLUE", allowed) == ("blu", 1.0)


def test_match_allowed_value_fuzzy_and_rejection() -> None:
    allowed = [AllowedValue("RED", "Red"), AllowedValue("BLU", "Blue")]

    short_form, score = match_allowed_value("Navy-Blue", allowed)
    assert short_form == "BLU"
    assert score == pytest.approx(0.9)

    short_form, score = match_allowed_value("green", allowed)
    assert short_form is None
    assert score <= 0.8


@pytest.mark.parametrize(
    "content",
    [
        '```json\n{"color": {"value": "RED"}}\n```',
        '```json{"color": {"value": "RED"}}```',
        '```\n{"color": {"value": "RED"}}```',
    ],
)
def test_parse_payload_strips_code_fence(content: str) -> None:
    outcome = parse_payload(content)

    assert outcome.ok
    assert outcome.payload == {"color": {"value": "RED"}}


@pytest.mark.parametrize(
    "content",
    ["", "   ", "not json at all", "[1, 2, 3]", "I'm sorry, I can't help with that."],
)
def test_parse_payload_reports_failure_without_raising(content: str) -> None:
    outcome = parse_payload(content)

    assert not outcome.ok
    assert outcome.error


def test_parse_payload_unwraps_schema_attributes_envelope() -> None:
    content = json.dumps({"schemaAttributes": {"color": {"value": "RED"}}, "overallConfidence": 80})

    outcome = parse_payload(content)

    assert outcome.payload == {"color": {"value": "RED"}, "overallConfidence": 80}


def test_validate_select_fields(garment_schema: CategorySchema) -> None:
    content = answer({"color": ("Blue", 0.9), "material": ("cotton", 80), "fit": ("baggy", 60)})

    validated = ResponseValidator().validate(content, garment_schema)

    color = validated.attributes["color"]
    assert color.normalized_value == "BLU"
    assert color.raw_value == "Blue"
    assert color.confidence == 90
    assert color.is_valid
    assert validated.attributes["material"].normalized_value == "COT"
    fit = validated.attributes["fit"]
    assert fit.normalized_value is None
    assert not fit.is_valid
    assert validated.overall_confidence == round((90 + 80 + 60) / 3)


def test_select_values_always_resolve_to_allowed_short_forms(garment_schema: CategorySchema) -> None:
    validator = ResponseValidator()
    allowed = {value.short_form for field in garment_schema.fields for value in field.allowed_values}

    for guess in ["RED", "red", "Reddish", "BLUE", "navy blue", "purple", "", "C0TT0N", "wool blend"]:
        content = answer({"color": (guess, 50), "material": (guess, 50), "fit": (guess, 50)})
        validated = validator.validate(content, garment_schema)
        for item in validated.attributes.values():
            assert item.normalized_value is None or item.normalized_value in allowed


def test_validate_number_text_and_missing_fields(mixed_schema: CategorySchema) -> None:
    content = answer({"length_cm": ("102 cm", 75), "pattern": ("  pinstripe ", 60)})

    validated = ResponseValidator().validate(content, mixed_schema)

    assert validated.attributes["length_cm"].normalized_value == 102.0
    assert validated.attributes["pattern"].normalized_value == "pinstripe"
    assert validated.attributes["color"].normalized_value is None
    assert validated.attributes["color"].is_valid
    assert validated.attributes["color"].confidence == 0
    brand = validated.attributes["brand"]
    assert brand.normalized_value is None
    assert not brand.is_valid
    assert validated.overall_confidence == 68


def test_validate_unparsable_number_is_null(mixed_schema: CategorySchema) -> None:
    content = answer({"length_cm": ("long", 70)})

    validated = ResponseValidator().validate(content, mixed_schema)

    assert validated.attributes["length_cm"].normalized_value is None
    assert not validated.attributes["length_cm"].is_valid


def test_validate_null_strings_are_treated_as_missing(mixed_schema: CategorySchema) -> None:
    content = answer({"pattern": ("null", 90), "brand": ("None", 90)})

    validated = ResponseValidator().validate(content, mixed_schema)

    assert validated.attributes["pattern"].raw_value is None
    assert validated.attributes["pattern"].confidence == 0
    assert not validated.attributes["brand"].is_valid
    assert validated.overall_confidence == 0


def test_validate_accepts_alias_keys_and_bare_scalars(mixed_schema: CategorySchema) -> None:
    content = json.dumps(
        {
            "color": {"schemaValue": "RED", "visualConfidence": 0.8},
            "brand": "Acme",
            "length_cm": 98,
        },
    )

    validated = ResponseValidator().validate(content, mixed_schema)

    assert validated.attributes["color"].normalized_value == "RED"
    assert validated.attributes["color"].confidence == 80
    assert validated.attributes["brand"].normalized_value == "Acme"
    assert validated.attributes["brand"].confidence == 0
    assert validated.attributes["length_cm"].normalized_value == 98.0


@pytest.mark.parametrize("content", ["", "{not json", '"just a string"', "I'm unable to analyse this image."])
def test_validate_raises_parse_error(content: str, garment_schema: CategorySchema) -> None:
    with pytest.raises(ParseError):
        ResponseValidator().validate(content, garment_schema)


@pytest.mark.parametrize(("reasoning", "expected"), [(5, "5"), (["red", "fabric"], "['red', 'fabric']"), (None, "")])
def test_non_string_reasoning_keeps_the_answer(
    reasoning: object,
    expected: str,
    garment_schema: CategorySchema,
) -> None:
    content = json.dumps({"color": {"value": "RED", "confidence": 90, "reasoning": reasoning}})

    color = ResponseValidator().validate(content, garment_schema).attributes["color"]

    assert color.raw_value == "RED"
    assert color.normalized_value == "RED"
    assert color.confidence == 90
    assert color.reasoning == expected
    assert color.is_valid
