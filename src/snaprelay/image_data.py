# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Base64 image input helpers used at the HTTP and CLI edges."""

from __future__ import annotations

import base64
import binascii
import re

from .errors import InvalidImageError

DEFAULT_MIME_TYPE = "image/jpeg"

_DATA_URL_RE = re.compile(r"^data:([a-zA-Z0-9]+/[a-zA-Z0-9.+-]+);base64,")

# Leading base64 characters of well-known image signatures.
_MAGIC_PREFIXES: tuple[tuple[str, str], ...] = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
)

_EXTENSIONS: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


def strip_data_url(data: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix if present."""
    return _DATA_URL_RE.sub("", data.strip(), count=1)


def detect_mime_type(data: str) -> str:
    """MIME type from the data-URL prefix, else from the payload signature."""
    data = data.strip()
    m = _DATA_URL_RE.match(data)
    if m:
        return m.group(1).lower()
    for prefix, mime in _MAGIC_PREFIXES:
        if data.startswith(prefix):
            return mime
    return DEFAULT_MIME_TYPE


def extension_for_mime(mime_type: str) -> str:
    return _EXTENSIONS.get(mime_type.lower(), ".jpg")


def looks_like_image_base64(data: str) -> bool:
    """Cheap shape check before decoding: data-URL image or known signature."""
    data = data.strip()
    if data.startswith("data:image/"):
        return True
    return any(data.startswith(prefix) for prefix, _ in _MAGIC_PREFIXES)


def decode_base64_image(data: str) -> bytes:
    """Decode a (possibly data-URL) base64 image.

    Raises:
        InvalidImageError: empty input or malformed base64.
    """
    payload = strip_data_url(data)
    if not payload:
        raise InvalidImageError("No image data provided")
    # Browsers and clipboard tools often drop the trailing padding.
    payload = re.sub(r"\s+", "", payload)
    payload += "=" * (-len(payload) % 4)
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError(f"Invalid base64 image data: {exc}") from exc
    if not raw:
        raise InvalidImageError("No image data provided")
    return raw
