"""Upload checks performed before an image is sent to the model."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from io import BytesIO

from PIL import Image, UnidentifiedImageError

from vision_attrs.errors import ValidationError

DEFAULT_MAX_IMAGE_BYTES = 20 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class ImagePayload:
    """Image bytes with the metadata the pipeline needs."""

    data: bytes
    mime_type: str
    content_hash: str


def content_hash(data: bytes) -> str:
    """SHA-256 of the image bytes, used for deduplication and cache keys."""

    return hashlib.sha256(data).hexdigest()


def inspect_image(data: bytes | None, max_bytes: int = DEFAULT_MAX_IMAGE_BYTES) -> ImagePayload:
    """Validate raw upload bytes and return an ``ImagePayload``.

    The image is identified but never decoded in full or re-encoded.
    """

    if not data:
        raise ValidationError("Image is missing.")
    if len(data) > max_bytes:
        raise ValidationError(
            f"Image size {len(data)} bytes exceeds the {max_bytes // (1024 * 1024)}MB limit.",
        )

    try:
        with Image.open(BytesIO(data)) as img:
            image_format = img.format
    except Image.DecompressionBombError as exc:
        raise ValidationError("Image dimensions exceed the decompression limit.") from exc
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ValidationError("Uploaded file is not a supported image.") from exc

    mime_type = Image.MIME.get(image_format or "", "application/octet-stream")
    return ImagePayload(data=data, mime_type=mime_type, content_hash=content_hash(data))
