"""Raster masks for detected regions.

A mask is an ``(H, W)`` uint8 array holding the blend weight of sanitized
content: 0 keeps the original pixel, 255 replaces it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import cv2
import numpy as np

from outfit360.privacy.geometry import Keypoint, Region, pad_region, require_original_space

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

INNER_RADIUS_RATIO = 0.3
OUTER_RADIUS_RATIO = 0.8

# Sub-pixel precision for cv2 shape drawing.
_SHIFT = 4
_ONE = 1 << _SHIFT


class MaskStyle(StrEnum):
    HARD_ELLIPSE = "hard_ellipse"
    HARD_POLYGON = "hard_polygon"
    FEATHERED_ELLIPSE = "feathered_ellipse"
    FEATHERED_POLYGON = "feathered_polygon"

    @property
    def feathered(self) -> bool:
        return self in (MaskStyle.FEATHERED_ELLIPSE, MaskStyle.FEATHERED_POLYGON)

    @property
    def uses_polygon(self) -> bool:
        return self in (MaskStyle.HARD_POLYGON, MaskStyle.FEATHERED_POLYGON)


@dataclass(frozen=True)
class MaskShape:
    region: Region
    keypoints: tuple[Keypoint, ...] = ()


def build_mask(
    width: int,
    height: int,
    shapes: Sequence[MaskShape],
    style: MaskStyle = MaskStyle.FEATHERED_ELLIPSE,
    padding: float = 0.2,
) -> NDArray[np.uint8]:
    """Rasterize shapes into a full-frame mask.

    Polygon styles fill the keypoint contour when a shape has one and fall
    back to the ellipse inscribed in the padded box otherwise. Feathered
    styles weight the fill by a radial falloff around the box centre.
    Overlapping shapes keep the larger weight.
    """
    mask = np.zeros((height, width), dtype=np.uint8)
    for shape in shapes:
        require_original_space(shape.region)
        if shape.region.width <= 0 or shape.region.height <= 0:
            continue
        layer = _fill_shape(width, height, shape, style, padding)
        if style.feathered:
            layer = (layer.astype(np.float32) * _radial_falloff(width, height, shape.region)).astype(np.uint8)
        np.maximum(mask, layer, out=mask)
    return mask


def _fill_shape(width: int, height: int, shape: MaskShape, style: MaskStyle, padding: float) -> NDArray[np.uint8]:
    layer = np.zeros((height, width), dtype=np.uint8)
    if style.uses_polygon and len(shape.keypoints) >= 3:
        points = np.array([[kp.x * _ONE, kp.y * _ONE] for kp in shape.keypoints], dtype=np.int32)
        cv2.fillPoly(layer, [points], 255, lineType=cv2.LINE_8, shift=_SHIFT)
        return layer

    padded = pad_region(shape.region, padding)
    cx, cy = padded.center
    center = (round(cx * _ONE), round(cy * _ONE))
    axes = (max(1, round(padded.width / 2 * _ONE)), max(1, round(padded.height / 2 * _ONE)))
    cv2.ellipse(layer, center, axes, 0, 0, 360, 255, thickness=-1, lineType=cv2.LINE_8, shift=_SHIFT)
    return layer


def _radial_falloff(width: int, height: int, region: Region) -> NDArray[np.float32]:
    """1.0 inside the inner radius, linear fade to 0.0 at the outer radius."""
    cx, cy = region.center
    size = min(region.width, region.height)
    inner = INNER_RADIUS_RATIO * size
    outer = OUTER_RADIUS_RATIO * size

    ys, xs = np.ogrid[:height, :width]
    distance = np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2, dtype=np.float32)
    return np.clip((outer - distance) / (outer - inner), 0.0, 1.0).astype(np.float32)
