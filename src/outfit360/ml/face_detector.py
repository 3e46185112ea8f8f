"""Face detection capability.

Implementations: UltraFace RFB-320 / RFB-640 (ONNX).
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
class RawFace:
    """Raw face detection result.

    Coordinates are in pixel space of the image handed to the detector.
    """

    bbox: NDArray[np.float32]
    score: float
    keypoints: NDArray[np.float32] | None = None


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def estimate_faces(self, image: NDArray[np.uint8]) -> list[RawFace]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array.

        Returns:
            Detections with ``bbox`` as ``[x1, y1, x2, y2]`` and optional
            ``keypoints`` as an ``(N, 2)`` array of ``(x, y)`` contour points.
        """
        ...


class UltraFaceDetector:
    """UltraFace (version-RFB) ONNX face detector.

    The network takes a fixed-size RGB tensor and emits per-anchor class
    scores and corner boxes normalized to ``[0, 1]``; normalized corners map
    straight back onto the input image whatever its aspect ratio.
    """

    def __init__(
        self,
        session: InferenceSession,
        model_name: str,
        input_size: tuple[int, int],
        score_threshold: float,
        nms_threshold: float,
    ) -> None:
        self._session = session
        self._model_name = model_name
        self._input_size = input_size
        self._score_threshold = score_threshold
        self._nms_threshold = nms_threshold
        self._input_name = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def estimate_faces(self, image: NDArray[np.uint8]) -> list[RawFace]:
        height, width = image.shape[:2]
        tensor = self._to_tensor(image)
        scores, boxes = self._session.run(None, {self._input_name: tensor})

        confidences = scores[0, :, 1]
        keep = confidences > self._score_threshold
        if not np.any(keep):
            return []

        corners = boxes[0][keep] * np.array([width, height, width, height], dtype=np.float32)
        confidences = confidences[keep]
        xywh = [[float(x1), float(y1), float(x2 - x1), float(y2 - y1)] for x1, y1, x2, y2 in corners]
        indices = cv2.dnn.NMSBoxes(xywh, confidences.tolist(), self._score_threshold, self._nms_threshold)

        faces = [
            RawFace(bbox=corners[i].astype(np.float32), score=float(confidences[i]))
            for i in np.asarray(indices, dtype=np.int64).reshape(-1)
        ]
        logger.debug("%s found %d face(s)", self._model_name, len(faces))
        return faces

    def _to_tensor(self, image: NDArray[np.uint8]) -> NDArray[np.float32]:
        resized = cv2.resize(image, self._input_size, interpolation=cv2.INTER_LINEAR)
        normalized = (resized.astype(np.float32) - 127.0) / 128.0
        return np.ascontiguousarray(normalized.transpose(2, 0, 1)[np.newaxis])
