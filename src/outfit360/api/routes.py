"""API route definitions."""

from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from outfit360.api.middleware import limit_upload_size, verify_api_key
from outfit360.api.schemas import (
    DegradedFrameInfo,
    ErrorResponse,
    ExportRequest,
    FrameFailureInfo,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ProcessVideoResponse,
)
from outfit360.errors import DetectionError, FrameIOError, MediaError, ModelInitError
from outfit360.media.ffmpeg import sorted_frames
from outfit360.ml.model_manager import MODEL_REGISTRY
from outfit360.ml.preprocessing import decode_image, encode_image
from outfit360.privacy.pipeline import build_pipeline

if TYPE_CHECKING:
    from typing import BinaryIO

    from outfit360.config import Settings
    from outfit360.main import AppServices
    from outfit360.privacy.pipeline import FramePipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

RAW_FRAMES_DIR = "raw-frames"
PROCESSED_FRAMES_DIR = "processed-frames"

_MEDIA_TYPES = {"gif": "image/gif", "mp4": "video/mp4"}


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_services(request: Request) -> AppServices:
    services: AppServices = request.app.state.services
    return services


def _sanitize_png(pipeline: FramePipeline, data: bytes) -> tuple[bytes, list[str]]:
    try:
        image = decode_image(data)
    except ValueError as e:
        raise FrameIOError("upload", str(e)) from e
    outcome = pipeline.run(image)
    return encode_image(outcome.image, ".png"), outcome.degraded


def _store_upload(source: BinaryIO, path: Path) -> int:
    with path.open("wb") as out:
        shutil.copyfileobj(source, out)
    return path.stat().st_size


def _model_unavailable(error: ModelInitError) -> HTTPException:
    logger.error("Model unavailable: %s", error)
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(error))


@router.post(
    "/sanitize-frame",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/png": {}}},
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    dependencies=[Depends(limit_upload_size)],
    summary="Blur faces and/or background in a single image",
)
async def sanitize_frame(
    request: Request,
    file: UploadFile,
    blur_face: Annotated[bool, Form()] = True,
    blur_background: Annotated[bool, Form()] = False,
) -> Response:
    """Run the privacy pipeline on one uploaded image and return it as PNG."""
    services = _get_services(request)
    data = await file.read()
    pipeline = build_pipeline(
        services.options,
        services.face_provider,
        services.body_provider,
        blur_face=blur_face,
        blur_background=blur_background,
    )
    try:
        content, degraded = await services.pool.run(_sanitize_png, pipeline, data)
    except FrameIOError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except TimeoutError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server busy") from e
    except ModelInitError as e:
        raise _model_unavailable(e) from e
    except DetectionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    headers = {"X-Outfit360-Degraded": "; ".join(degraded)} if degraded else None
    return Response(content=content, media_type="image/png", headers=headers)


@router.post(
    "/process-video",
    response_model=ProcessVideoResponse,
    responses={
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    dependencies=[Depends(limit_upload_size)],
    summary="Extract and sanitize the frames of a rotation video",
)
async def process_video(
    request: Request,
    video: UploadFile,
    blur_face: Annotated[bool, Form()] = False,
    blur_background: Annotated[bool, Form()] = False,
) -> ProcessVideoResponse:
    """Store an uploaded video, split it into frames, and sanitize them if asked."""
    settings = _get_settings(request)
    services = _get_services(request)

    upload_id = uuid.uuid4().hex
    upload_dir = Path(settings.uploads_dir) / upload_id
    upload_dir.mkdir(parents=True, exist_ok=True)
    video_path = upload_dir / "input.mp4"
    size = await run_in_threadpool(_store_upload, video.file, video_path)
    logger.info("Stored upload %s (%d bytes)", upload_id, size)

    raw_dir = upload_dir / RAW_FRAMES_DIR
    try:
        await services.ffmpeg.extract_frames(video_path, raw_dir)
    except MediaError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    response = ProcessVideoResponse(id=upload_id, frames=[], total_frames=0)
    frames_dir = raw_dir
    if blur_face or blur_background:
        frames_dir = upload_dir / PROCESSED_FRAMES_DIR
        try:
            result = await services.batch.process_frames(
                raw_dir, frames_dir, blur_face=blur_face, blur_background=blur_background
            )
        except ModelInitError as e:
            raise _model_unavailable(e) from e
        response.failures = [
            FrameFailureInfo(filename=f.filename, kind=f.kind, reason=f.reason) for f in result.failures
        ]
        response.degraded = [DegradedFrameInfo(filename=d.filename, reason=d.reason) for d in result.degraded]

    frames = sorted_frames(frames_dir, tuple(settings.frame_extensions))
    response.frames = [f"/uploads/{upload_id}/{frames_dir.name}/{frame.name}" for frame in frames]
    response.total_frames = len(frames)
    return response


@router.post(
    "/export",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"image/gif": {}, "video/mp4": {}}},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
    summary="Encode an upload's frames as GIF or MP4",
)
async def export(request: Request, body: ExportRequest) -> Response:
    """Encode processed frames (or raw frames if none) and return the file."""
    settings = _get_settings(request)
    services = _get_services(request)

    upload_dir = Path(settings.uploads_dir) / body.id
    source = upload_dir / PROCESSED_FRAMES_DIR
    if not source.is_dir():
        source = upload_dir / RAW_FRAMES_DIR
    if not source.is_dir():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown upload: {body.id}")

    output_path = upload_dir / f"output.{body.format}"
    try:
        await services.ffmpeg.export(source, output_path, body.format)
        content = await run_in_threadpool(output_path.read_bytes)
    except MediaError as e:
        logger.error("Export of %s failed: %s", body.id, e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error exporting file") from e
    finally:
        output_path.unlink(missing_ok=True)

    return Response(
        content=content,
        media_type=_MEDIA_TYPES[body.format],
        headers={"Content-Disposition": f'attachment; filename="outfit360_{body.id}.{body.format}"'},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    services = _get_services(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=services.model_manager.get_loaded_models(),
        concurrent_requests=services.pool.active_count,
        queue_depth=services.pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available models and whether each is the configured one."""
    settings = _get_settings(request)
    active_models = {settings.face_detection_model, settings.body_detection_model}

    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                task=spec.task.value,
                status="active" if spec.name in active_models else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
