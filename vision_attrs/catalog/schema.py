"""Category schema definitions supplied by the external schema provider."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol

from vision_attrs.errors import ValidationError


class FieldType(str, Enum):
    """Supported attribute field types."""

    TEXT = "text"
    SELECT = "select"
    NUMBER = "number"


@dataclass(frozen=True, slots=True)
class AllowedValue:
    """One entry of a controlled vocabulary."""

    short_form: str
    full_form: str = ""


@dataclass(frozen=True, slots=True)
class AttributeField:
    """A named, typed slot of a category schema."""

    key: str
    label: str
    type: FieldType = FieldType.TEXT
    required: bool = False
    allowed_values: tuple[AllowedValue, ...] = ()

    @property
    def short_forms(self) -> tuple[str, ...]:
        return tuple(value.short_form for value in self.allowed_values)


@dataclass(frozen=True, slots=True)
class CategorySchema:
    """Immutable ordered list of attribute fields identified by id and version."""

    id: str
    fields: tuple[AttributeField, ...]
    version: str = "1"
    name: str = ""

    @property
    def fingerprint(self) -> tuple[str, int]:
        """Identity used to memoize prompts: schema id and field count."""

        return self.id, len(self.fields)

    def check(self) -> None:
        """Structural sanity check; the provider is otherwise trusted."""

        if not self.id:
            raise ValidationError("Schema id is missing.")
        if not self.fields:
            raise ValidationError(f"Schema {self.id!r} has no attribute fields.")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "CategorySchema":
        """Build a schema from plain dictionaries (JSON fixtures, provider rows)."""

        fields = []
        for item in payload.get("fields") or []:
            allowed = tuple(
                AllowedValue(
                    short_form=str(value.get("shortForm") or value.get("short_form") or ""),
                    full_form=str(value.get("fullForm") or value.get("full_form") or ""),
                )
                for value in item.get("allowedValues") or item.get("allowed_values") or []
            )
            fields.append(
                AttributeField(
                    key=str(item["key"]),
                    label=str(item.get("label") or item["key"]),
                    type=FieldType(item.get("type", FieldType.TEXT.value)),
                    required=bool(item.get("required", False)),
                    allowed_values=allowed,
                ),
            )
        return cls(
            id=str(payload.get("id", "")),
            fields=tuple(fields),
            version=str(payload.get("version", "1")),
            name=str(payload.get("name", "")),
        )


class SchemaProvider(Protocol):
    """Read-only source of category schemas."""

    def get_schema(self, schema_id: str) -> CategorySchema: ...


@dataclass(slots=True)
class StaticSchemaProvider:
    """In-memory provider backed by a dictionary of schemas."""

    schemas: dict[str, CategorySchema] = field(default_factory=dict)

    def add(self, schema: CategorySchema) -> None:
        self.schemas[schema.id] = schema

    def get_schema(self, schema_id: str) -> CategorySchema:
        try:
            return self.schemas[schema_id]
        except KeyError as exc:
            raise ValidationError(f"Unknown schema {schema_id!r}.") from exc
