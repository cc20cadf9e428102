"""Image intake helpers."""

from .validation import ImagePayload, content_hash, inspect_image

__all__ = ["ImagePayload", "content_hash", "inspect_image"]
