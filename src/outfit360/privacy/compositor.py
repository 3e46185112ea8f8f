"""Layer sanitized pixels back onto a frame."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from outfit360.errors import CompositingError
from outfit360.privacy.geometry import Region, require_original_space

if TYPE_CHECKING:
    from numpy.typing import NDArray


def blend(
    original: NDArray[np.uint8],
    sanitized: NDArray[np.uint8],
    mask: NDArray[np.uint8],
) -> NDArray[np.uint8]:
    """Per-pixel ``original * (1 - a) + sanitized * a`` with ``a = mask / 255``.

    Rounds to nearest; a weight of 0 returns the original pixel and 255 the
    sanitized pixel exactly.

    Raises:
        CompositingError: If the buffers or mask disagree on shape.
    """
    if original.shape != sanitized.shape:
        raise CompositingError(f"Buffer shapes differ: {original.shape} vs {sanitized.shape}")
    if mask.shape != original.shape[:2]:
        raise CompositingError(f"Mask shape {mask.shape} does not match image {original.shape[:2]}")

    weight = mask.astype(np.uint32)[..., np.newaxis] if original.ndim == 3 else mask.astype(np.uint32)
    mixed = original.astype(np.uint32) * (255 - weight) + sanitized.astype(np.uint32) * weight
    return ((mixed + 127) // 255).astype(np.uint8)


def paste(base: NDArray[np.uint8], patch: NDArray[np.uint8], region: Region) -> NDArray[np.uint8]:
    """Copy ``patch`` into a copy of ``base`` at ``region``, without blending.

    Raises:
        CompositingError: If the region is not a clamped, original-space box
            matching the patch, or the channel counts differ.
    """
    require_original_space(region)
    height, width = base.shape[:2]
    x, y, w, h = int(region.x_min), int(region.y_min), int(region.width), int(region.height)
    if x < 0 or y < 0 or x + w > width or y + h > height:
        raise CompositingError(f"Region {region} exceeds image bounds {width}x{height}")
    if patch.shape[:2] != (h, w) or patch.shape[2:] != base.shape[2:]:
        raise CompositingError(f"Patch shape {patch.shape} does not fit region {region} on {base.shape}")

    result = base.copy()
    result[region.slices()] = patch
    return result
