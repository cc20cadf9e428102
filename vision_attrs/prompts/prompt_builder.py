"""Prompt construction for the attribute extraction step."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from vision_attrs.catalog.schema import AttributeField, CategorySchema, FieldType

logger = logging.getLogger(__name__)

_MAX_TEXT = 60

SYSTEM_PROMPT = (
    "You are a fashion attribute extraction specialist. You analyse garment images "
    "with high precision and always answer with a single JSON object, never markdown."
)


def _clip(text: str, limit: int = _MAX_TEXT) -> str:
    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


class SchemaPromptBuilder:
    """Builds bounded, deterministic instruction prompts from a category schema.

    Prompts are memoized by schema fingerprint (id + field count). Once the
    cache grows past ``high_water`` the oldest entries are dropped until
    ``low_water`` remain.
    """

    def __init__(
        self,
        *,
        max_fields: int = 15,
        max_allowed_values: int = 8,
        high_water: int = 100,
        low_water: int = 50,
    ) -> None:
        if low_water > high_water:
            raise ValueError("low_water must not exceed high_water")
        self._max_fields = max_fields
        self._max_allowed_values = max_allowed_values
        self._high_water = high_water
        self._low_water = low_water
        self._cache: OrderedDict[tuple[str, int], str] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._cache)

    def build_prompt(self, schema: CategorySchema) -> str:
        """Return the instruction prompt for ``schema``."""

        key = schema.fingerprint
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        prompt = self._render(schema)

        with self._lock:
            self._cache[key] = prompt
            if len(self._cache) > self._high_water:
                while len(self._cache) > self._low_water:
                    self._cache.popitem(last=False)
                logger.debug("Prompt cache trimmed to %d entries", len(self._cache))
        return prompt

    def _render(self, schema: CategorySchema) -> str:
        fields = schema.fields[: self._max_fields]
        if len(schema.fields) > len(fields):
            logger.info(
                "Schema %s has %d fields; prompting for the first %d",
                schema.id,
                len(schema.fields),
                len(fields),
            )

        attribute_lines = "\n".join(self._describe(field) for field in fields)
        example_key = fields[0].key if fields else "attribute_key"
        category = f" The garment category is {_clip(schema.name)}." if schema.name else ""

        return (
            "Analyse this clothing image and extract the following attributes."
            f"{category}\n\n"
            "ATTRIBUTES:\n"
            f"{attribute_lines}\n\n"
            "RULES:\n"
            "1. For select attributes answer ONLY with a short form from the allowed list.\n"
            "2. For number attributes answer with digits only.\n"
            "3. If an attribute is not visible or not applicable, use null as the value.\n"
            "4. Give every attribute an integer confidence from 0 to 100.\n"
            "5. Keep reasoning to one short sentence.\n\n"
            "Respond with JSON only, exactly in this shape:\n"
            "{\n"
            f'  "{example_key}": {{"value": "...", "confidence": 85, "reasoning": "..."}},\n'
            '  "overallConfidence": 85\n'
            "}"
        )

    def _describe(self, field: AttributeField) -> str:
        # Keys and short forms must round-trip through the model unchanged.
        line = f"- {field.key}: {_clip(field.label)} [{field.type.value}]"
        if field.required:
            line += " (required)"
        if field.type is FieldType.SELECT and field.allowed_values:
            options = ", ".join(
                value.short_form
                + (f" = {_clip(value.full_form, 40)}" if value.full_form else "")
                for value in field.allowed_values[: self._max_allowed_values]
            )
            line += f" allowed: {options}"
        return line
