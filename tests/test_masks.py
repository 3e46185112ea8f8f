"""Tests for mask rasterization."""

from __future__ import annotations

import numpy as np
import pytest

from outfit360.errors import CompositingError
from outfit360.privacy.geometry import CoordinateSpace, Keypoint, Region
from outfit360.privacy.masks import MaskShape, MaskStyle, build_mask

_FACE = MaskShape(Region(30, 30, 40, 40))
_TRIANGLE = MaskShape(
    Region(10, 10, 40, 40),
    keypoints=(Keypoint(10, 10), Keypoint(50, 10), Keypoint(10, 50)),
)


class TestBuildMask:
    @pytest.mark.parametrize("style", list(MaskStyle))
    def test_no_shapes_gives_empty_mask(self, style: MaskStyle) -> None:
        mask = build_mask(64, 48, [], style)
        assert mask.shape == (48, 64)
        assert mask.dtype == np.uint8
        assert not mask.any()

    def test_hard_ellipse_covers_padded_box(self) -> None:
        mask = build_mask(100, 100, [_FACE], MaskStyle.HARD_ELLIPSE, padding=0.2)
        assert mask[50, 50] == 255
        # Padded box is 48 wide, so the ellipse reaches ~24px from the centre.
        assert mask[50, 27] == 255
        assert mask[50, 24] == 0
        assert mask[30, 30] == 0
        assert set(np.unique(mask)) <= {0, 255}

    def test_feathered_ellipse_fades_from_centre(self) -> None:
        mask = build_mask(100, 100, [_FACE], MaskStyle.FEATHERED_ELLIPSE, padding=0.2)
        assert mask[50, 50] == 255
        # Inner radius is 0.3 * 40 = 12px at full weight.
        assert mask[50, 61] == 255
        assert 0 < mask[50, 72] < 255
        assert mask[0, 0] == 0
        # Nothing outside the padded ellipse.
        hard = build_mask(100, 100, [_FACE], MaskStyle.HARD_ELLIPSE, padding=0.2)
        assert not mask[hard == 0].any()

    def test_hard_polygon_follows_keypoints(self) -> None:
        mask = build_mask(64, 64, [_TRIANGLE], MaskStyle.HARD_POLYGON)
        assert mask[15, 15] == 255
        assert mask[45, 45] == 0

    def test_polygon_style_falls_back_to_ellipse(self) -> None:
        polygon = build_mask(100, 100, [_FACE], MaskStyle.HARD_POLYGON)
        ellipse = build_mask(100, 100, [_FACE], MaskStyle.HARD_ELLIPSE)
        np.testing.assert_array_equal(polygon, ellipse)

    def test_ellipse_style_ignores_keypoints(self) -> None:
        mask = build_mask(64, 64, [_TRIANGLE], MaskStyle.HARD_ELLIPSE, padding=0.0)
        assert mask[45, 45] == 0
        assert mask[30, 45] == 255

    def test_feathered_polygon_is_clipped_to_contour(self) -> None:
        mask = build_mask(64, 64, [_TRIANGLE], MaskStyle.FEATHERED_POLYGON)
        assert mask[25, 25] == 255
        assert mask[45, 45] == 0

    def test_overlapping_shapes_keep_maximum(self) -> None:
        left = MaskShape(Region(10, 30, 40, 40))
        right = MaskShape(Region(40, 30, 40, 40))
        union = build_mask(100, 100, [left, right], MaskStyle.FEATHERED_ELLIPSE)
        only_left = build_mask(100, 100, [left], MaskStyle.FEATHERED_ELLIPSE)
        only_right = build_mask(100, 100, [right], MaskStyle.FEATHERED_ELLIPSE)
        np.testing.assert_array_equal(union, np.maximum(only_left, only_right))

        # Order does not matter.
        np.testing.assert_array_equal(union, build_mask(100, 100, [right, left], MaskStyle.FEATHERED_ELLIPSE))

    def test_shape_partly_outside_image(self) -> None:
        mask = build_mask(50, 50, [MaskShape(Region(-10, -10, 30, 30))], MaskStyle.HARD_ELLIPSE)
        assert mask[0, 0] == 255
        assert mask[49, 49] == 0

    def test_zero_area_shape_ignored(self) -> None:
        assert not build_mask(50, 50, [MaskShape(Region(10, 10, 0, 5))], MaskStyle.HARD_ELLIPSE).any()

    def test_rejects_detection_space(self) -> None:
        shape = MaskShape(Region(0, 0, 5, 5, space=CoordinateSpace.DETECTION))
        with pytest.raises(CompositingError):
            build_mask(10, 10, [shape], MaskStyle.HARD_ELLIPSE)
