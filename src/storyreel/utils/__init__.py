"""
Utility functions.
"""

from .image_utils import encode_image, to_data_uri, image_base64, decode_base64_image, normalize_to_png
from .storage import save_metadata, load_metadata

__all__ = [
    "encode_image",
    "to_data_uri",
    "image_base64",
    "decode_base64_image",
    "normalize_to_png",
    "save_metadata",
    "load_metadata",
]
