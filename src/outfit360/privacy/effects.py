"""Blur and pixelation over whole frames or rectangular regions."""

from __future__ import annotations

import math
from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

from outfit360.privacy.geometry import Region, clamp_to_bounds, is_degenerate, require_original_space

if TYPE_CHECKING:
    from numpy.typing import NDArray


class FaceEffect(StrEnum):
    BLUR = "blur"
    PIXELATE = "pixelate"
    BLUR_PIXELATE = "blur_pixelate"


def strong_blur(
    image: NDArray[np.uint8],
    sigma: float = 40.0,
    passes: int = 1,
    region: Region | None = None,
) -> NDArray[np.uint8]:
    """Gaussian blur with standard deviation ``sigma``.

    ``passes`` runs ``n`` blurs of ``sigma / sqrt(n)``; Gaussian variances add
    under convolution, so the result approximates one blur of ``sigma`` with
    smaller kernels. With ``region`` only that box is replaced, though the
    blur still samples up to three sigmas of surrounding context.
    """
    pass_sigma = sigma / math.sqrt(passes)
    if region is None:
        return _blur_passes(image, pass_sigma, passes)

    require_original_space(region)
    height, width = image.shape[:2]
    box = clamp_to_bounds(region, width, height)
    result = image.copy()
    if is_degenerate(box):
        return result

    margin = math.ceil(3 * sigma)
    context = clamp_to_bounds(
        Region(box.x_min - margin, box.y_min - margin, box.width + 2 * margin, box.height + 2 * margin),
        width,
        height,
    )
    blurred = _blur_passes(image[context.slices()], pass_sigma, passes)
    inner = Region(box.x_min - context.x_min, box.y_min - context.y_min, box.width, box.height)
    result[box.slices()] = blurred[inner.slices()]
    return result


def _blur_passes(image: NDArray[np.uint8], sigma: float, passes: int) -> NDArray[np.uint8]:
    out = image
    for _ in range(passes):
        out = cv2.GaussianBlur(out, (0, 0), sigmaX=sigma, sigmaY=sigma, borderType=cv2.BORDER_REFLECT_101)
    return out if out is not image else image.copy()


def pixelate(image: NDArray[np.uint8], region: Region, block_size: int = 20) -> NDArray[np.uint8]:
    """Replace each ``block_size`` square of ``region`` with its mean colour.

    Blocks are anchored at the region's top-left corner and clipped at its
    right and bottom edges. Means are floored per channel, alpha included,
    and are computed from the input so written blocks never feed back.
    """
    if block_size < 1:
        raise ValueError("block_size must be >= 1")
    require_original_space(region)
    height, width = image.shape[:2]
    box = clamp_to_bounds(region, width, height)
    result = image.copy()
    if is_degenerate(box):
        return result

    x0, y0 = int(box.x_min), int(box.y_min)
    x1, y1 = x0 + int(box.width), y0 + int(box.height)
    channels = 1 if image.ndim == 2 else image.shape[2]
    for top in range(y0, y1, block_size):
        bottom = min(top + block_size, y1)
        for left in range(x0, x1, block_size):
            right = min(left + block_size, x1)
            block = image[top:bottom, left:right].reshape(-1, channels)
            mean = block.sum(axis=0, dtype=np.int64) // block.shape[0]
            result[top:bottom, left:right] = mean.astype(np.uint8).reshape(image.shape[2:])
    return result


def sanitize_region(
    image: NDArray[np.uint8],
    region: Region,
    effect: FaceEffect,
    sigma: float = 40.0,
    passes: int = 1,
    block_size: int = 20,
) -> NDArray[np.uint8]:
    """Apply ``effect`` to ``region``; blur always runs before pixelation."""
    out = image
    if effect in (FaceEffect.BLUR, FaceEffect.BLUR_PIXELATE):
        out = strong_blur(out, sigma=sigma, passes=passes, region=region)
    if effect in (FaceEffect.PIXELATE, FaceEffect.BLUR_PIXELATE):
        out = pixelate(out, region, block_size=block_size)
    return out
