"""Typed extraction results produced once per attempt."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class AttributeResult(BaseModel):
    """Stores one field's extracted value with its confidence score."""

    model_config = ConfigDict(frozen=True)

    raw_value: str | float | int | bool | None = None
    normalized_value: str | float | None = None
    confidence: int = Field(default=0, ge=0, le=100)
    reasoning: str = ""
    is_valid: bool = False


class TokenUsage(BaseModel):
    """Token accounting reported by the upstream model."""

    model_config = ConfigDict(frozen=True)

    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ValidatedAttributes(BaseModel):
    """Output of the response validator for a single model response."""

    model_config = ConfigDict(frozen=True)

    attributes: dict[str, AttributeResult]
    overall_confidence: int = Field(ge=0, le=100)


class ExtractionResult(BaseModel):
    """Aggregate of field results plus the metadata of the attempt that produced them."""

    model_config = ConfigDict(frozen=True)

    schema_id: str
    schema_version: str
    attributes: dict[str, AttributeResult]
    overall_confidence: int = Field(ge=0, le=100)
    low_confidence: bool = False
    from_cache: bool = False
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cost_usd: float = 0.0
    attempts: int = 1
    retry_delay_ms: float = 0.0
    processing_ms: float = 0.0
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def values(self) -> dict[str, str | float | None]:
        """Return ``{key: normalized_value}`` for display or export."""

        return {key: item.normalized_value for key, item in self.attributes.items()}
