"""Tests for category schema loading and the static provider."""

from __future__ import annotations

import pytest

from vision_attrs.catalog.schema import CategorySchema, FieldType, StaticSchemaProvider
from vision_attrs.errors import ValidationError


def test_from_mapping_accepts_camel_case_rows() -> None:
    schema = CategorySchema.from_mapping(
        {
            "id": "kurtas",
            "version": 3,
            "name": "Kurtas",
            "fields": [
                {
                    "key": "neck",
                    "label": "Neck type",
                    "type": "select",
                    "required": True,
                    "allowedValues": [{"shortForm": "RND", "fullForm": "Round"}, {"short_form": "VNK"}],
                },
                {"key": "length_cm", "type": "number"},
            ],
        },
    )

    assert schema.version == "3"
    assert schema.fingerprint == ("kurtas", 2)
    neck, length = schema.fields
    assert neck.type is FieldType.SELECT
    assert neck.required
    assert neck.short_forms == ("RND", "VNK")
    assert neck.allowed_values[0].full_form == "Round"
    assert length.label == "length_cm"
    assert length.type is FieldType.NUMBER


def test_check_rejects_structurally_empty_schemas() -> None:
    with pytest.raises(ValidationError):
        CategorySchema(id="", fields=()).check()
    with pytest.raises(ValidationError):
        CategorySchema.from_mapping({"id": "empty"}).check()


def test_static_provider(garment_schema: CategorySchema) -> None:
    provider = StaticSchemaProvider()
    provider.add(garment_schema)

    assert provider.get_schema("shirts") is garment_schema
    with pytest.raises(ValidationError, match="Unknown schema"):
        provider.get_schema("hats")
