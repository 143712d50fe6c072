"""Base64 image data URL codec.

Request and response images travel as self-describing data URLs
(``data:image/<subtype>;base64,<payload>``). This module converts them to
``ImagePayload`` values and back.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from dataclasses import dataclass

import magic

from ..models.exceptions import MalformedInputException

logger = logging.getLogger(__name__)

_DATA_URL_RE = re.compile(r"^data:(image/[a-zA-Z0-9.+-]+);base64,(.+)$", re.DOTALL)

# Signatures used when libmagic cannot classify the buffer
_SIGNATURES = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)

# libmagic names that differ from the registered image types
_MIME_ALIASES = {
    "image/x-ms-bmp": "image/bmp",
    "image/x-png": "image/png",
    "image/pjpeg": "image/jpeg",
}


@dataclass(frozen=True)
class ImagePayload:
    mime: str
    data: bytes

    @property
    def extension(self) -> str:
        return extension_for_mime(self.mime)


def decode_data_url(value: str | None, field: str = "image") -> ImagePayload:
    """Decode a data URL into an ``ImagePayload``.

    Raises:
        MalformedInputException: if ``value`` is not a base64 image data URL.
    """
    m = _DATA_URL_RE.match(value or "")
    if not m:
        raise MalformedInputException(field)
    mime, b64 = m.group(1), m.group(2)
    try:
        data = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedInputException(field, "Image payload is not valid base64")
    if not data:
        raise MalformedInputException(field, "Image payload is empty")
    return ImagePayload(mime=mime, data=data)


def encode_data_url(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def sniff_image_mime(data: bytes, default: str = "image/png") -> str:
    """Detect the image type of ``data`` with libmagic.

    Anything libmagic does not report as ``image/*`` is labelled ``default``.
    """
    try:
        mime = magic.from_buffer(data, mime=True)
    except Exception as e:
        logger.error(f"Magic MIME detection failed: {e}")
        return _sniff_signature(data, default)
    mime = _MIME_ALIASES.get(mime, mime)
    return mime if mime.startswith("image/") else default


def _sniff_signature(data: bytes, default: str) -> str:
    for signature, mime in _SIGNATURES:
        if data.startswith(signature):
            return mime
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return default


def extension_for_mime(mime: str) -> str:
    subtype = mime.split("/", 1)[-1].lower()
    return "jpg" if subtype == "jpeg" else subtype
