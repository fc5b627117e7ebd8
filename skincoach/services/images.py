from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
from typing import Optional

from skincoach.errors import ValidationError


logger = logging.getLogger("skincoach.images")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
DEFAULT_MEDIA_TYPE = "image/jpeg"

_ALLOWED_TYPES = {
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/png": "image/png",
    "image/webp": "image/webp",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "webp": "image/webp",
}


@dataclass(frozen=True)
class ImagePayload:
    data: bytes
    media_type: str

    @property
    def size(self) -> int:
        return len(self.data)

    def as_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


def sniff_media_type(data: bytes) -> Optional[str]:
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def _normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    # Drop parameters such as "; charset=binary".
    base = content_type.split(";", 1)[0].strip().lower()
    return base or None


def validate_image(data: bytes, content_type: Optional[str] = None) -> ImagePayload:
    if not data:
        raise ValidationError("Image file is empty")

    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError(f"Image file too large: {len(data)} bytes (max: 10MB)")

    declared = _normalize_content_type(content_type)
    if declared is not None and declared != "application/octet-stream":
        media_type = _ALLOWED_TYPES.get(declared)
        if media_type is None:
            raise ValidationError(f"Unsupported image format: {content_type}")
    else:
        media_type = sniff_media_type(data) or DEFAULT_MEDIA_TYPE

    logger.info("image_validation_passed bytes=%d media_type=%s", len(data), media_type)
    return ImagePayload(data=data, media_type=media_type)
