"""Model invocation, response validation and pricing."""

from .pricing import estimate_cost
from .response_validator import ResponseValidator, normalize_confidence, parse_payload
from .vision_client import ModelInvoker, RawResponse

__all__ = [
    "ModelInvoker",
    "RawResponse",
    "ResponseValidator",
    "estimate_cost",
    "normalize_confidence",
    "parse_payload",
]
