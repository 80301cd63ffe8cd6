from __future__ import annotations

import base64
from pathlib import Path

EXTENSION_MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".bmp": "image/bmp",
    ".webp": "image/webp",
}

DEFAULT_MIME_TYPE = "image/png"


def _mime_from_magic(data: bytes) -> str | None:
    if len(data) < 4:
        return None
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"GIF8":
        return "image/gif"
    if data[:2] == b"BM":
        return "image/bmp"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def detect_mime_type(data: bytes, file_path: str | None = None) -> str:
    """Detect an image MIME type from the file extension, then magic bytes, else PNG."""
    if file_path:
        by_extension = EXTENSION_MIME_TYPES.get(Path(file_path).suffix.lower())
        if by_extension:
            return by_extension
    if data:
        by_magic = _mime_from_magic(data)
        if by_magic:
            return by_magic
    return DEFAULT_MIME_TYPE


def to_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"
