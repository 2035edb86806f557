"""Shared utilities for gateway implementations."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from formcast.errors import ConfigurationError

_IMAGE_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def sniff_image_mime_type(data: str) -> str:
    """Guess the media type of a base64 image from its leading bytes.

    Raises:
        ConfigurationError: The data is not base64 or not a supported format.
    """
    try:
        head = base64.b64decode(data[:64] + "=" * (-len(data[:64]) % 4))
    except (binascii.Error, ValueError) as e:
        raise ConfigurationError(
            "Image is not valid base64",
            hint="Pass raw base64 without a data: URL prefix.",
        ) from e
    for signature, mime_type in _IMAGE_SIGNATURES:
        if head.startswith(signature):
            return mime_type
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    raise ConfigurationError(
        "Unsupported image format",
        hint="Images must be PNG, JPEG, GIF or WebP.",
    )


def loads_tool_arguments(arguments: str) -> dict[str, Any]:
    """Best-effort decode of tool-call arguments for replay to a provider."""
    if not arguments.strip():
        return {}
    try:
        value = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}
