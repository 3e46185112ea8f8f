"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from outfit360.ml.body_detector import PoseEstimator
    from outfit360.ml.face_detector import FaceDetector
    from outfit360.ml.model_manager import ModelManager
    from outfit360.privacy.detection import DetectorProvider

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from outfit360.api.routes import router
from outfit360.config import Settings, get_settings
from outfit360.media.ffmpeg import FfmpegRunner
from outfit360.ml.inference import InferencePool
from outfit360.ml.model_manager import OnnxModelManager
from outfit360.privacy.batch import FrameBatchProcessor
from outfit360.privacy.detection import body_detector_provider, face_detector_provider
from outfit360.privacy.pipeline import PrivacyOptions

logger = logging.getLogger(__name__)


@dataclass
class AppServices:
    """Process-wide collaborators shared by all requests."""

    pool: InferencePool
    model_manager: ModelManager
    face_provider: DetectorProvider[FaceDetector]
    body_provider: DetectorProvider[PoseEstimator]
    options: PrivacyOptions
    batch: FrameBatchProcessor
    ffmpeg: FfmpegRunner

    def shutdown(self) -> None:
        self.face_provider.shutdown()
        self.body_provider.shutdown()
        self.model_manager.shutdown()
        self.pool.shutdown()


def build_services(settings: Settings) -> AppServices:
    """Wire the pool, model manager, detector providers, and batch processor."""
    pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    face_provider = face_detector_provider(settings, model_manager)
    body_provider = body_detector_provider(settings, model_manager)
    options = PrivacyOptions.from_settings(settings)
    batch = FrameBatchProcessor(
        pool,
        face_provider,
        body_provider,
        options,
        extensions=settings.frame_extensions,
        jpeg_quality=settings.jpeg_quality,
        timeout=settings.batch_timeout,
    )
    return AppServices(
        pool=pool,
        model_manager=model_manager,
        face_provider=face_provider,
        body_provider=body_provider,
        options=options,
        batch=batch,
        ffmpeg=FfmpegRunner(settings.ffmpeg_path, fps=settings.extract_fps),
    )


def init_app_state(app: FastAPI, settings: Settings) -> AppServices:
    """Attach settings and services to ``app.state``."""
    Path(settings.uploads_dir).mkdir(parents=True, exist_ok=True)
    services = build_services(settings)
    app.state.settings = settings
    app.state.services = services
    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings: Settings = app.state.settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting Outfit360 (device=%s, max_concurrent=%s, face=%s, body=%s, policy=%s)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.body_detection_model,
        settings.detection_failure_policy,
    )

    services = init_app_state(app, settings)

    logger.info("Outfit360 ready")
    yield

    logger.info("Shutting down Outfit360")
    services.shutdown()
    logger.info("Outfit360 shutdown complete")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    application = FastAPI(
        title="Outfit360",
        description="Privacy-sanitized frame sequences for 360° garment viewers",
        version="0.1.0",
        lifespan=lifespan,
    )
    application.state.settings = settings

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    application.mount("/uploads", StaticFiles(directory=settings.uploads_dir, check_dir=False), name="uploads")
    return application


app = create_app()
