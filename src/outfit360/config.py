"""Environment-based configuration for Outfit360."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from OUTFIT360_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="OUTFIT360_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    face_detection_model: str = "ultraface_rfb_320"
    body_detection_model: str = "movenet_lightning"
    models_dir: str = "models"
    # HuggingFace repo to fetch model files missing from models_dir (None = local only)
    model_repo: str | None = None

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Detection
    detection_size: int = Field(default=512, ge=32)
    face_score_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    face_nms_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    pose_keypoint_threshold: float = Field(default=0.3, ge=0.0, le=1.0)

    # Effects
    blur_sigma: float = Field(default=40.0, gt=0.0)
    blur_passes: int = Field(default=1, ge=1)
    pixel_block_size: int = Field(default=20, ge=1)
    face_effect: Literal["blur", "pixelate", "blur_pixelate"] = "blur"
    face_mask_style: Literal["hard_ellipse", "hard_polygon", "feathered_ellipse", "feathered_polygon"] = (
        "feathered_ellipse"
    )
    face_mask_padding: float = Field(default=0.2, ge=0.0)
    face_compositing: Literal["masked", "box"] = "masked"
    background_compositing: Literal["box", "masked"] = "box"

    # What to do with an effect whose detector failed on a single frame
    detection_failure_policy: Literal["skip_effect", "blur_frame", "fail_frame"] = "blur_frame"

    # Batch processing
    max_concurrent: int = Field(default=2, ge=1)
    batch_timeout: float | None = Field(default=None, gt=0.0)
    frame_extensions: tuple[str, ...] = (".jpg", ".jpeg", ".png")
    jpeg_quality: int = Field(default=95, ge=1, le=100)

    # Media handling
    uploads_dir: str = "uploads"
    ffmpeg_path: str = "ffmpeg"
    extract_fps: int = Field(default=24, ge=1)
    max_upload_size: int = Field(default=209_715_200, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
