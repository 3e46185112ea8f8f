"""Shared fixtures: fake detector capabilities and synthetic frames."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from outfit360.config import Settings
from outfit360.ml.body_detector import RawPose
from outfit360.ml.face_detector import RawFace
from outfit360.privacy.detection import DetectorProvider

if TYPE_CHECKING:
    from numpy.typing import NDArray


class FakeFaceDetector:
    """Returns canned faces (in the coordinates of whatever image it is given)."""

    model_name = "fake_face"

    def __init__(self, boxes: list[tuple[float, float, float, float]] | None = None, error: Exception | None = None):
        self.boxes = boxes or []
        self.error = error
        self.seen_shapes: list[tuple[int, ...]] = []

    def estimate_faces(self, image: NDArray[np.uint8]) -> list[RawFace]:
        self.seen_shapes.append(image.shape)
        if self.error is not None:
            raise self.error
        return [
            RawFace(bbox=np.array([x, y, x + w, y + h], dtype=np.float32), score=0.99) for x, y, w, h in self.boxes
        ]


class FakePoseEstimator:
    model_name = "fake_pose"

    def __init__(self, keypoints: list[tuple[float, float]] | None = None, error: Exception | None = None):
        self.keypoints = keypoints or []
        self.error = error
        self.seen_shapes: list[tuple[int, ...]] = []

    def estimate_poses(self, image: NDArray[np.uint8]) -> list[RawPose]:
        self.seen_shapes.append(image.shape)
        if self.error is not None:
            raise self.error
        if not self.keypoints:
            return []
        points = np.array(self.keypoints, dtype=np.float32)
        return [RawPose(keypoints=points, scores=np.ones(len(points), dtype=np.float32))]


def provider_for(kind: str, detector: object) -> DetectorProvider:
    return DetectorProvider(kind, lambda: detector)


def noise_image(width: int = 100, height: int = 100, channels: int = 3, seed: int = 0) -> NDArray[np.uint8]:
    rng = np.random.default_rng(seed)
    return rng.integers(0, 256, size=(height, width, channels), dtype=np.uint8)


def solid_image(
    width: int = 100, height: int = 100, color: tuple[int, ...] = (120, 80, 200)
) -> NDArray[np.uint8]:
    return np.full((height, width, len(color)), color, dtype=np.uint8)


def write_png(path: Path, image: NDArray[np.uint8]) -> Path:
    Image.fromarray(image).save(path, format="PNG")
    return path


def read_png(path: Path) -> NDArray[np.uint8]:
    with Image.open(path) as img:
        return np.asarray(img).copy()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        models_dir=str(tmp_path / "models"),
        uploads_dir=str(tmp_path / "uploads"),
        frame_extensions=(".png", ".jpg"),
    )
