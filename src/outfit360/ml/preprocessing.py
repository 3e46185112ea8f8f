"""Image decoding, encoding, and detector input normalization."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

_FORMATS = {".jpg": "JPEG", ".jpeg": "JPEG", ".png": "PNG", ".webp": "WEBP", ".bmp": "BMP"}


def decode_image(image_bytes: bytes) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB or RGBA uint8 array.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img.load()
            has_alpha = "A" in img.getbands() or (img.mode == "P" and "transparency" in img.info)
            converted = img.convert("RGBA" if has_alpha else "RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e
    return np.asarray(converted, dtype=np.uint8).copy()


def encode_image(image: NDArray[np.uint8], suffix: str, jpeg_quality: int = 95) -> bytes:
    """Encode an RGB(A) array in the format implied by a file suffix.

    Raises:
        ValueError: If the suffix has no known encoder.
    """
    fmt = _FORMATS.get(suffix.lower())
    if fmt is None:
        raise ValueError(f"Unsupported image format: {suffix}")

    img = Image.fromarray(image)
    options: dict[str, object] = {}
    if fmt == "JPEG":
        img = img.convert("RGB")
        options["quality"] = jpeg_quality
    buffer = io.BytesIO()
    img.save(buffer, format=fmt, **options)
    return buffer.getvalue()


def fit_inside(image: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Downscale so the longer side equals ``size``; never upscales or crops."""
    height, width = image.shape[:2]
    longest = max(height, width)
    if longest <= size:
        return image
    scale = size / longest
    target = (max(1, round(width * scale)), max(1, round(height * scale)))
    return cv2.resize(image, target, interpolation=cv2.INTER_AREA)


def prepare_for_detection(image: NDArray[np.uint8], size: int) -> NDArray[np.uint8]:
    """Return a contiguous RGB copy fitted inside a ``size`` square."""
    return np.ascontiguousarray(fit_inside(image, size)[:, :, :3])
