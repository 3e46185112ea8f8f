"""Per-frame privacy pipeline.

Stages run in order and each one receives the previous stage's output as
``FrameState.current``. Detection always looks at ``FrameState.source`` (the
untouched decoded frame) while effects only ever read ``current``, so a face
blurred after a background pass is blurred on top of the background result.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from outfit360.errors import DetectionError
from outfit360.privacy.compositor import blend, paste
from outfit360.privacy.detection import DEFAULT_DETECTION_SIZE, detect_body, detect_faces
from outfit360.privacy.effects import FaceEffect, sanitize_region, strong_blur
from outfit360.privacy.geometry import Region, bounding_region, clamp_to_bounds, is_degenerate, pad_region
from outfit360.privacy.masks import MaskShape, MaskStyle, build_mask

if TYPE_CHECKING:
    from collections.abc import Sequence

    import numpy as np
    from numpy.typing import NDArray

    from outfit360.config import Settings
    from outfit360.ml.body_detector import PoseEstimator
    from outfit360.ml.face_detector import FaceDetector
    from outfit360.privacy.detection import DetectorProvider

logger = logging.getLogger(__name__)


class Compositing(StrEnum):
    MASKED = "masked"
    BOX = "box"


class FailurePolicy(StrEnum):
    SKIP_EFFECT = "skip_effect"
    BLUR_FRAME = "blur_frame"
    FAIL_FRAME = "fail_frame"


@dataclass(frozen=True)
class PrivacyOptions:
    blur_sigma: float = 40.0
    blur_passes: int = 1
    pixel_block_size: int = 20
    face_effect: FaceEffect = FaceEffect.BLUR
    face_mask_style: MaskStyle = MaskStyle.FEATHERED_ELLIPSE
    face_mask_padding: float = 0.2
    face_compositing: Compositing = Compositing.MASKED
    background_compositing: Compositing = Compositing.BOX
    detection_size: int = DEFAULT_DETECTION_SIZE
    failure_policy: FailurePolicy = FailurePolicy.BLUR_FRAME

    @classmethod
    def from_settings(cls, settings: Settings) -> PrivacyOptions:
        return cls(
            blur_sigma=settings.blur_sigma,
            blur_passes=settings.blur_passes,
            pixel_block_size=settings.pixel_block_size,
            face_effect=FaceEffect(settings.face_effect),
            face_mask_style=MaskStyle(settings.face_mask_style),
            face_mask_padding=settings.face_mask_padding,
            face_compositing=Compositing(settings.face_compositing),
            background_compositing=Compositing(settings.background_compositing),
            detection_size=settings.detection_size,
            failure_policy=FailurePolicy(settings.detection_failure_policy),
        )


@dataclass(frozen=True)
class FrameState:
    source: NDArray[np.uint8]
    current: NDArray[np.uint8]

    @property
    def width(self) -> int:
        return int(self.source.shape[1])

    @property
    def height(self) -> int:
        return int(self.source.shape[0])


@dataclass
class FrameOutcome:
    image: NDArray[np.uint8]
    # Human-readable notes for effects that did not run as requested.
    degraded: list[str] = field(default_factory=list)


class Stage(Protocol):
    name: str

    def apply(self, state: FrameState) -> NDArray[np.uint8]:
        """Return a new buffer derived from ``state.current``."""
        ...


class BackgroundBlurStage:
    """Blur everything except the dominant subject.

    Without a detected subject the whole frame is blurred.
    """

    name = "background"

    def __init__(self, provider: DetectorProvider[PoseEstimator], options: PrivacyOptions) -> None:
        self._provider = provider
        self._options = options

    def apply(self, state: FrameState) -> NDArray[np.uint8]:
        opts = self._options
        detector = self._provider.ensure()
        body = detect_body(detector, state.source, state.width, state.height, opts.detection_size)

        blurred = strong_blur(state.current, sigma=opts.blur_sigma, passes=opts.blur_passes)
        if body is None:
            logger.debug("No subject found; blurring whole frame")
            return blurred

        if opts.background_compositing is Compositing.BOX:
            return paste(blurred, state.current[body.slices()], body)

        keep = build_mask(state.width, state.height, [MaskShape(body)], MaskStyle.FEATHERED_ELLIPSE, padding=0.0)
        return blend(blurred, state.current, keep)


class FaceBlurStage:
    """Blur and/or pixelate every detected face."""

    name = "face"

    def __init__(self, provider: DetectorProvider[FaceDetector], options: PrivacyOptions) -> None:
        self._provider = provider
        self._options = options

    def apply(self, state: FrameState) -> NDArray[np.uint8]:
        opts = self._options
        detector = self._provider.ensure()
        faces = detect_faces(detector, state.source, state.width, state.height, opts.detection_size)

        shapes = []
        for face in faces:
            box = clamp_to_bounds(face.region, state.width, state.height)
            if is_degenerate(box):
                logger.debug("Dropping face outside frame: %s", face.region)
                continue
            shapes.append(MaskShape(box, face.keypoints))
        if not shapes:
            return state.current

        if opts.face_compositing is Compositing.BOX:
            return self._replace_boxes(state.current, shapes)
        return self._blend_masked(state, shapes)

    def _sanitize(self, image: NDArray[np.uint8], region: Region) -> NDArray[np.uint8]:
        opts = self._options
        return sanitize_region(
            image,
            region,
            opts.face_effect,
            sigma=opts.blur_sigma,
            passes=opts.blur_passes,
            block_size=opts.pixel_block_size,
        )

    def _replace_boxes(self, current: NDArray[np.uint8], shapes: Sequence[MaskShape]) -> NDArray[np.uint8]:
        out = current
        for shape in shapes:
            box = shape.region
            crop = out[box.slices()]
            patch = self._sanitize(crop, Region(0, 0, box.width, box.height))
            out = paste(out, patch, box)
        return out

    def _blend_masked(self, state: FrameState, shapes: Sequence[MaskShape]) -> NDArray[np.uint8]:
        opts = self._options
        sanitized = state.current
        for shape in shapes:
            sanitized = self._sanitize(sanitized, self._cover(shape, state))
        mask = build_mask(state.width, state.height, shapes, opts.face_mask_style, opts.face_mask_padding)
        return blend(state.current, sanitized, mask)

    def _cover(self, shape: MaskShape, state: FrameState) -> Region:
        """Clamped box holding every pixel the mask can give weight to."""
        boxes = [pad_region(shape.region, self._options.face_mask_padding)]
        contour = bounding_region(shape.keypoints, shape.region.space)
        if contour is not None:
            boxes.append(contour)
        # Whole pixels, inclusive of the far edge the rasterizer may touch.
        x0 = math.floor(min(b.x_min for b in boxes))
        y0 = math.floor(min(b.y_min for b in boxes))
        x1 = math.ceil(max(b.x_max for b in boxes)) + 1
        y1 = math.ceil(max(b.y_max for b in boxes)) + 1
        return clamp_to_bounds(Region(x0, y0, x1 - x0, y1 - y0), state.width, state.height)


class FramePipeline:
    """Runs stages left to right, applying the detection failure policy."""

    def __init__(self, stages: Sequence[Stage], options: PrivacyOptions) -> None:
        self._stages = list(stages)
        self._options = options

    @property
    def stages(self) -> list[Stage]:
        return list(self._stages)

    def run(self, image: NDArray[np.uint8]) -> FrameOutcome:
        """Sanitize one frame.

        Raises:
            ModelInitError: If a stage's detector cannot be built.
            DetectionError: If detection fails under the ``fail_frame`` policy.
            CompositingError: On a buffer/mask shape mismatch.
        """
        outcome = FrameOutcome(image=image)
        for stage in self._stages:
            state = FrameState(source=image, current=outcome.image)
            try:
                outcome.image = stage.apply(state)
            except DetectionError as e:
                outcome.image = self._on_detection_error(stage, state, e, outcome)
        return outcome

    def _on_detection_error(
        self, stage: Stage, state: FrameState, error: DetectionError, outcome: FrameOutcome
    ) -> NDArray[np.uint8]:
        policy = self._options.failure_policy
        if policy is FailurePolicy.FAIL_FRAME:
            raise error

        outcome.degraded.append(f"{stage.name}: {error}")
        if policy is FailurePolicy.SKIP_EFFECT:
            logger.warning("Skipping %s effect after detection failure: %s", stage.name, error)
            return state.current

        logger.warning("Blurring whole frame after %s detection failure: %s", stage.name, error)
        return strong_blur(state.current, sigma=self._options.blur_sigma, passes=self._options.blur_passes)


def build_pipeline(
    options: PrivacyOptions,
    face_provider: DetectorProvider[FaceDetector],
    body_provider: DetectorProvider[PoseEstimator],
    *,
    blur_face: bool,
    blur_background: bool,
) -> FramePipeline:
    stages: list[Stage] = []
    if blur_background:
        stages.append(BackgroundBlurStage(body_provider, options))
    if blur_face:
        stages.append(FaceBlurStage(face_provider, options))
    return FramePipeline(stages, options)
