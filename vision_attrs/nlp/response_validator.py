"""Parse and normalise raw model output against a category schema."""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from vision_attrs.catalog.attributes import AttributeResult, ValidatedAttributes
from vision_attrs.catalog.matching import match_allowed_value
from vision_attrs.catalog.schema import AttributeField, CategorySchema, FieldType
from vision_attrs.errors import ParseError

logger = logging.getLogger(__name__)

_REFUSAL_MARKERS = ("I'm sorry", "I can't", "I'm unable")
_NUMBER_JUNK = re.compile(r"[^0-9.\-]+")
_OVERALL_KEYS = {"overallConfidence", "overall_confidence"}
_FENCE = re.compile(r"^```[A-Za-z0-9_-]*\s*|\s*```$")


class RawFieldAnswer(BaseModel):
    """Shape the model is asked to return for every attribute."""

    model_config = ConfigDict(extra="ignore")

    value: Any = Field(
        default=None,
        validation_alias=AliasChoices("value", "schemaValue", "rawValue"),
    )
    confidence: Any = Field(
        default=None,
        validation_alias=AliasChoices("confidence", "visualConfidence"),
    )
    reasoning: Any = None


@dataclass(frozen=True, slots=True)
class ParseOutcome:
    """Result of the structural parse step; never raised, always returned."""

    ok: bool
    payload: dict[str, Any]
    error: str | None = None


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_confidence(value: Any) -> int:
    """Coerce a self-reported confidence to an integer in ``[0, 100]``.

    Values in ``(0, 1]`` are read as fractions and scaled by 100.
    """

    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, str):
        cleaned = value.strip().rstrip("%").strip()
        try:
            value = float(cleaned)
        except ValueError:
            return 0
    if not isinstance(value, (int, float)) or math.isnan(value):
        return 0

    score = float(value)
    if 0 < score <= 1:
        score *= 100
    score = min(max(score, 0.0), 100.0)
    return _round_half_up(score)


def overall_confidence(confidences: Iterable[int]) -> int:
    """Rounded mean of the non-zero confidences, or 0 when there are none."""

    scored = [item for item in confidences if item > 0]
    if not scored:
        return 0
    return _round_half_up(sum(scored) / len(scored))


def strip_code_fence(content: str) -> str:
    """Remove an optional markdown code fence (```json ... ```)."""

    return _FENCE.sub("", content.strip()).strip()


def parse_payload(content: str | None) -> ParseOutcome:
    """Turn raw model text into a JSON object without raising."""

    if not content or not content.strip():
        return ParseOutcome(ok=False, payload={}, error="empty response")

    stripped = content.strip()
    if any(stripped.startswith(marker) for marker in _REFUSAL_MARKERS):
        return ParseOutcome(ok=False, payload={}, error=f"model refused: {stripped[:100]}")

    try:
        parsed = json.loads(strip_code_fence(stripped))
    except json.JSONDecodeError as exc:
        return ParseOutcome(ok=False, payload={}, error=f"invalid JSON: {exc.msg}")

    if not isinstance(parsed, dict):
        return ParseOutcome(ok=False, payload={}, error=f"expected object, got {type(parsed).__name__}")

    # Some prompts wrap fields in a "schemaAttributes" envelope.
    nested = parsed.get("schemaAttributes")
    if isinstance(nested, dict):
        parsed = {**nested, **{key: parsed[key] for key in _OVERALL_KEYS if key in parsed}}
    return ParseOutcome(ok=True, payload=parsed)


class ResponseValidator:
    """Validates model answers field-by-field against the schema."""

    def validate(self, raw_content: str | None, schema: CategorySchema) -> ValidatedAttributes:
        """Return normalised attributes and the overall confidence.

        Raises ``ParseError`` when the content is not a JSON object.
        """

        outcome = parse_payload(raw_content)
        if not outcome.ok:
            logger.warning("Unparsable model output for schema %s: %s", schema.id, outcome.error)
            raise ParseError(f"Failed to parse model response: {outcome.error}")

        attributes = {
            field.key: self._validate_field(field, outcome.payload.get(field.key))
            for field in schema.fields
        }
        overall = overall_confidence(item.confidence for item in attributes.values())
        return ValidatedAttributes(attributes=attributes, overall_confidence=overall)

    def _validate_field(self, field: AttributeField, entry: Any) -> AttributeResult:
        answer = self._coerce_entry(entry)
        if answer is None:
            return AttributeResult(is_valid=not field.required)

        raw_value = answer.value
        if isinstance(raw_value, str) and raw_value.strip().lower() in {"", "null", "none"}:
            raw_value = None
        if raw_value is not None and not isinstance(raw_value, (str, int, float, bool)):
            raw_value = json.dumps(raw_value, ensure_ascii=False)

        reasoning = "" if answer.reasoning is None else str(answer.reasoning)
        if raw_value is None:
            return AttributeResult(reasoning=reasoning, is_valid=not field.required)

        normalized = self._normalize_value(field, raw_value)
        return AttributeResult(
            raw_value=raw_value,
            normalized_value=normalized,
            confidence=normalize_confidence(answer.confidence),
            reasoning=reasoning,
            is_valid=normalized is not None,
        )

    @staticmethod
    def _coerce_entry(entry: Any) -> RawFieldAnswer | None:
        if entry is None:
            return None
        if isinstance(entry, Mapping):
            try:
                return RawFieldAnswer.model_validate(dict(entry))
            except PydanticValidationError:
                logger.debug("Field entry has unexpected shape: %r", entry)
                return None
        # Bare scalar: the model skipped the envelope, so there is no confidence.
        return RawFieldAnswer(value=entry)

    @staticmethod
    def _normalize_value(field: AttributeField, value: str | int | float | bool) -> str | float | None:
        if field.type is FieldType.NUMBER:
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return float(value)
            digits = _NUMBER_JUNK.sub("", str(value))
            try:
                return float(digits)
            except ValueError:
                return None

        text = str(value).strip()
        if field.type is FieldType.SELECT and field.allowed_values:
            short_form, score = match_allowed_value(text, field.allowed_values)
            if short_form is None:
                logger.info("No allowed value for %s=%r (best score %.2f)", field.key, text, score)
            return short_form

        return text or None
