"""
Image Utilities
===============

Helper functions for the base64 images produced by the image and
composition services.
"""

import base64
import binascii
import io
import logging
import os
import re
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, UnidentifiedImageError

from ..core.exceptions import ValidationError

logger = logging.getLogger(__name__)


_DATA_URI_PREFIX = re.compile(r"^data:image/[\w.+-]+;base64,")

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
}


def encode_image(image_path: Union[str, Path]) -> Tuple[str, str]:
    """
    Encode an image to base64.

    Args:
        image_path: Path to the image file

    Returns:
        Tuple of (base64_data, mime_type)
    """
    path = Path(image_path)

    if not path.exists():
        raise FileNotFoundError(f"Image not found: {image_path}")

    mime_type = MIME_TYPES.get(path.suffix.lower(), "image/jpeg")
    with open(path, "rb") as f:
        data = base64.b64encode(f.read()).decode("utf-8")

    return data, mime_type


def to_data_uri(image_path: Union[str, Path]) -> str:
    """
    Convert an image file to a data URI.

    Returns:
        Data URI string (data:image/jpeg;base64,...)
    """
    data, mime_type = encode_image(image_path)
    return f"data:{mime_type};base64,{data}"


def image_input(value: str) -> str:
    """
    Prepare an image argument for a job payload.

    URLs and data URIs pass through; local paths become data URIs.
    """
    if value.startswith(("http://", "https://", "data:")):
        return value
    return to_data_uri(value)


def image_base64(value: str) -> str:
    """
    Bare base64 for services that take raw image data.

    Data URIs lose their prefix, existing local paths are read and encoded,
    anything else must already be valid base64.
    """
    if value.startswith("data:"):
        return _DATA_URI_PREFIX.sub("", value.strip())
    if os.path.isfile(value):
        data, _ = encode_image(value)
        return data
    decode_base64_image(value)
    return value.strip()


def decode_base64_image(data: str) -> bytes:
    """
    Decode base64 image data, with or without a data-URI prefix.

    Raises:
        ValidationError: If the data is not valid base64
    """
    stripped = _DATA_URI_PREFIX.sub("", data.strip())
    try:
        return base64.b64decode(stripped, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image data: {e}", field="image_base64") from e


def normalize_to_png(image_bytes: bytes) -> Tuple[bytes, Tuple[int, int]]:
    """
    Re-encode image bytes as PNG.

    Returns:
        Tuple of (png_bytes, (width, height))

    Raises:
        ValidationError: If Pillow cannot read the image
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA")
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            size = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Unreadable image data: {e}", field="image_base64") from e

    logger.debug(f"Normalized image to PNG {size[0]}x{size[1]} ({len(buffer.getvalue()) / 1024:.2f} KB)")
    return buffer.getvalue(), size
