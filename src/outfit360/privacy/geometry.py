"""Boxes and keypoints, and the transforms between detection and image space.

Detectors run on a downscaled copy of each frame. Every region they return is
in *detection* space and has to be rescaled into *original* space and then
clamped to the image before anything is drawn or composited with it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING

from outfit360.errors import CompositingError

if TYPE_CHECKING:
    from collections.abc import Sequence


class CoordinateSpace(StrEnum):
    DETECTION = "detection"
    ORIGINAL = "original"


@dataclass(frozen=True)
class Keypoint:
    x: float
    y: float


@dataclass(frozen=True)
class Region:
    """Axis-aligned box in pixel units of ``space``."""

    x_min: float
    y_min: float
    width: float
    height: float
    space: CoordinateSpace = CoordinateSpace.ORIGINAL

    @property
    def x_max(self) -> float:
        return self.x_min + self.width

    @property
    def y_max(self) -> float:
        return self.y_min + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x_min + self.width / 2, self.y_min + self.height / 2

    def slices(self) -> tuple[slice, slice]:
        """Return ``(rows, cols)`` slices for indexing an image array."""
        x, y = int(self.x_min), int(self.y_min)
        return slice(y, y + int(self.height)), slice(x, x + int(self.width))


def _round(value: float) -> int:
    # Round half up.
    return math.floor(value + 0.5)


def rescale(region: Region, scale_x: float, scale_y: float) -> Region:
    """Map a detection-space region into original space."""
    return Region(
        x_min=region.x_min * scale_x,
        y_min=region.y_min * scale_y,
        width=region.width * scale_x,
        height=region.height * scale_y,
        space=CoordinateSpace.ORIGINAL,
    )


def rescale_keypoints(keypoints: Sequence[Keypoint], scale_x: float, scale_y: float) -> tuple[Keypoint, ...]:
    return tuple(Keypoint(kp.x * scale_x, kp.y * scale_y) for kp in keypoints)


def clamp_to_bounds(region: Region, image_width: int, image_height: int) -> Region:
    """Snap a region to whole pixels and shrink it to fit inside the image.

    The left/top edge is clamped into ``[0, dim)``; the far edge is clamped to
    ``dim``. A region lying entirely outside the image comes back with zero
    width or height (see :func:`is_degenerate`).
    """
    x0 = _round(region.x_min)
    y0 = _round(region.y_min)
    x1 = x0 + max(0, _round(region.width))
    y1 = y0 + max(0, _round(region.height))

    left, right = _clamp_span(x0, x1, image_width)
    top, bottom = _clamp_span(y0, y1, image_height)
    return replace(region, x_min=left, y_min=top, width=right - left, height=bottom - top)


def _clamp_span(start: int, end: int, limit: int) -> tuple[int, int]:
    if limit <= 0:
        return 0, 0
    lo = min(max(start, 0), limit)
    hi = min(max(end, lo), limit)
    if lo == limit:
        # Entirely past the far edge: keep the origin inside the image, zero extent.
        return limit - 1, limit - 1
    return lo, hi


def is_degenerate(region: Region) -> bool:
    return region.width <= 0 or region.height <= 0


def pad_region(region: Region, fraction: float) -> Region:
    """Grow a region by ``fraction`` of its size, split evenly on both sides."""
    dw = region.width * fraction
    dh = region.height * fraction
    return replace(
        region,
        x_min=region.x_min - dw / 2,
        y_min=region.y_min - dh / 2,
        width=region.width + dw,
        height=region.height + dh,
    )


def bounding_region(keypoints: Sequence[Keypoint], space: CoordinateSpace) -> Region | None:
    """Smallest box containing every keypoint, or None for an empty set."""
    if not keypoints:
        return None
    xs = [kp.x for kp in keypoints]
    ys = [kp.y for kp in keypoints]
    return Region(
        x_min=min(xs),
        y_min=min(ys),
        width=max(xs) - min(xs),
        height=max(ys) - min(ys),
        space=space,
    )


def require_original_space(region: Region) -> None:
    if region.space is not CoordinateSpace.ORIGINAL:
        raise CompositingError(f"Region {region} is in {region.space} space; rescale it before use")
