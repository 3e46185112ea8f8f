"""Subject detection in normalized detection space.

Each frame is fitted inside a small square before it reaches a detector, so
every result comes back in detection space. :func:`detect_faces` and
:func:`detect_body` are the only places that map results back to the
original frame; callers always receive original-space regions.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

from outfit360.errors import DetectionError, ModelInitError
from outfit360.ml.body_detector import MoveNetPoseEstimator
from outfit360.ml.face_detector import UltraFaceDetector
from outfit360.ml.model_manager import ModelTask, get_spec
from outfit360.ml.preprocessing import prepare_for_detection
from outfit360.privacy.geometry import (
    CoordinateSpace,
    Keypoint,
    Region,
    bounding_region,
    clamp_to_bounds,
    is_degenerate,
    rescale,
    rescale_keypoints,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from outfit360.config import Settings
    from outfit360.ml.body_detector import PoseEstimator
    from outfit360.ml.face_detector import FaceDetector
    from outfit360.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

H = TypeVar("H")

DEFAULT_DETECTION_SIZE = 512


@dataclass(frozen=True)
class FaceDetection:
    """A face in original-image space."""

    region: Region
    keypoints: tuple[Keypoint, ...] = ()
    score: float = 1.0


class DetectorProvider(Generic[H]):
    """Lazily builds one detector handle and hands the same one out forever.

    Concurrent first calls block on a lock so the factory runs at most once
    at a time; a failed build is not cached, so a later call may retry.
    """

    def __init__(self, kind: str, factory: Callable[[], H]) -> None:
        self.kind = kind
        self._factory = factory
        self._handle: H | None = None
        self._lock = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self._handle is not None

    def ensure(self) -> H:
        """Return the detector handle, building it on first use.

        Raises:
            ModelInitError: If the factory fails.
        """
        handle = self._handle
        if handle is not None:
            return handle

        with self._lock:
            if self._handle is None:
                logger.info("Initializing %s detector", self.kind)
                try:
                    self._handle = self._factory()
                except ModelInitError:
                    raise
                except Exception as e:
                    raise ModelInitError(self.kind, str(e)) from e
            return self._handle

    def shutdown(self) -> None:
        with self._lock:
            self._handle = None


def _scale_factors(
    detection_image: NDArray[np.uint8], original_width: int, original_height: int
) -> tuple[float, float]:
    det_height, det_width = detection_image.shape[:2]
    return original_width / det_width, original_height / det_height


def detect_faces(
    detector: FaceDetector,
    image: NDArray[np.uint8],
    original_width: int,
    original_height: int,
    detection_size: int = DEFAULT_DETECTION_SIZE,
) -> list[FaceDetection]:
    """Detect faces and return them in original-image space.

    Boxes are rescaled but not clamped; clamping is left to the consumer,
    which needs the unclamped extent for padding.

    Raises:
        DetectionError: If the detector raises.
    """
    detection_image = prepare_for_detection(image, detection_size)
    try:
        raw_faces = detector.estimate_faces(detection_image)
    except Exception as e:
        raise DetectionError("face", str(e)) from e

    scale_x, scale_y = _scale_factors(detection_image, original_width, original_height)
    faces: list[FaceDetection] = []
    for raw in raw_faces:
        x1, y1, x2, y2 = (float(v) for v in raw.bbox)
        box = Region(x1, y1, x2 - x1, y2 - y1, space=CoordinateSpace.DETECTION)
        keypoints: tuple[Keypoint, ...] = ()
        if raw.keypoints is not None and len(raw.keypoints) > 0:
            keypoints = rescale_keypoints(
                [Keypoint(float(x), float(y)) for x, y in raw.keypoints], scale_x, scale_y
            )
        faces.append(
            FaceDetection(region=rescale(box, scale_x, scale_y), keypoints=keypoints, score=raw.score)
        )
    return faces


def detect_body(
    detector: PoseEstimator,
    image: NDArray[np.uint8],
    original_width: int,
    original_height: int,
    detection_size: int = DEFAULT_DETECTION_SIZE,
) -> Region | None:
    """Return the dominant subject's clamped bounding box, or None.

    Only the first pose is used. None means no pose, no keypoints, or a box
    that clamps to nothing.

    Raises:
        DetectionError: If the estimator raises.
    """
    detection_image = prepare_for_detection(image, detection_size)
    try:
        poses = detector.estimate_poses(detection_image)
    except Exception as e:
        raise DetectionError("body", str(e)) from e

    if not poses:
        return None

    keypoints = [Keypoint(float(x), float(y)) for x, y in poses[0].keypoints]
    box = bounding_region(keypoints, CoordinateSpace.DETECTION)
    if box is None:
        return None

    scale_x, scale_y = _scale_factors(detection_image, original_width, original_height)
    clamped = clamp_to_bounds(rescale(box, scale_x, scale_y), original_width, original_height)
    if is_degenerate(clamped):
        return None
    return clamped


# ---------------------------------------------------------------------------
# ONNX-backed providers
# ---------------------------------------------------------------------------


def _check_task(model_name: str, task: ModelTask) -> None:
    spec = get_spec(model_name)
    if spec.task is not task:
        raise ModelInitError(task.value, f"model '{model_name}' is a {spec.task.value} model")


def face_detector_provider(settings: Settings, manager: ModelManager) -> DetectorProvider[FaceDetector]:
    model_name = settings.face_detection_model

    def build() -> FaceDetector:
        _check_task(model_name, ModelTask.FACE_DETECTION)
        return UltraFaceDetector(
            manager.get_session(model_name),
            model_name=model_name,
            input_size=get_spec(model_name).input_size,
            score_threshold=settings.face_score_threshold,
            nms_threshold=settings.face_nms_threshold,
        )

    return DetectorProvider("face", build)


def body_detector_provider(settings: Settings, manager: ModelManager) -> DetectorProvider[PoseEstimator]:
    model_name = settings.body_detection_model

    def build() -> PoseEstimator:
        _check_task(model_name, ModelTask.BODY_DETECTION)
        return MoveNetPoseEstimator(
            manager.get_session(model_name),
            model_name=model_name,
            input_size=get_spec(model_name).input_size[0],
            keypoint_threshold=settings.pose_keypoint_threshold,
        )

    return DetectorProvider("body", build)
