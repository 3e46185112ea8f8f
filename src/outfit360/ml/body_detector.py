"""Body pose estimation capability.

Implementations: MoveNet single-pose Lightning / Thunder (ONNX).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RawPose:
    """A single pose: ``(N, 2)`` keypoints and their ``(N,)`` scores.

    Coordinates are in pixel space of the image handed to the estimator.
    """

    keypoints: NDArray[np.float32]
    scores: NDArray[np.float32]


class PoseEstimator(Protocol):
    """Protocol for pose estimation models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def estimate_poses(self, image: NDArray[np.uint8]) -> list[RawPose]:
        """Estimate poses in an image, most prominent subject first.

        Args:
            image: HxWx3 RGB uint8 array.
        """
        ...


class MoveNetPoseEstimator:
    """MoveNet single-pose ONNX estimator.

    MoveNet expects a square int32 tensor, so the image is padded to a square
    on the bottom/right before resizing; the model's normalized ``(y, x)``
    outputs are then scaled by the padded side, which lands them back on the
    unpadded image.
    """

    def __init__(
        self,
        session: InferenceSession,
        model_name: str,
        input_size: int,
        keypoint_threshold: float,
    ) -> None:
        self._session = session
        self._model_name = model_name
        self._input_size = input_size
        self._keypoint_threshold = keypoint_threshold
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def estimate_poses(self, image: NDArray[np.uint8]) -> list[RawPose]:
        height, width = image.shape[:2]
        side = max(height, width)
        padded = np.zeros((side, side, 3), dtype=np.uint8)
        padded[:height, :width] = image[:, :, :3]

        resized = cv2.resize(padded, (self._input_size, self._input_size), interpolation=cv2.INTER_LINEAR)
        tensor = resized.astype(np.int32)[np.newaxis]
        (output,) = self._session.run(None, {self._input_name: tensor})

        # (1, 1, 17, 3): y, x, score
        raw = np.asarray(output, dtype=np.float32).reshape(-1, 3)
        visible = raw[:, 2] >= self._keypoint_threshold
        if not np.any(visible):
            return []

        points = np.stack([raw[visible, 1] * side, raw[visible, 0] * side], axis=1)
        logger.debug("%s kept %d keypoint(s)", self._model_name, len(points))
        return [RawPose(keypoints=points.astype(np.float32), scores=raw[visible, 2])]
