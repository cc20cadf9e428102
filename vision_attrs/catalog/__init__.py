"""Category schemas, attribute results and vocabulary matching."""

from .attributes import AttributeResult, ExtractionResult, TokenUsage, ValidatedAttributes
from .matching import match_allowed_value, similarity
from .schema import (
    AllowedValue,
    AttributeField,
    CategorySchema,
    FieldType,
    SchemaProvider,
    StaticSchemaProvider,
)

__all__ = [
    "AllowedValue",
    "AttributeField",
    "AttributeResult",
    "CategorySchema",
    "ExtractionResult",
    "FieldType",
    "SchemaProvider",
    "StaticSchemaProvider",
    "TokenUsage",
    "ValidatedAttributes",
    "match_allowed_value",
    "similarity",
]
