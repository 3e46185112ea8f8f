"""Pydantic request/response schemas for the Outfit360 API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class FrameFailureInfo(BaseModel):
    """A frame that could not be sanitized."""

    filename: str
    kind: str = Field(description="Failure kind: 'io', 'detection', or 'timeout'")
    reason: str


class DegradedFrameInfo(BaseModel):
    """A frame written with an effect skipped or replaced by a whole-frame blur."""

    filename: str
    reason: str


class ProcessVideoResponse(BaseModel):
    """Frame sequence for the 360° viewer."""

    id: str
    frames: list[str] = Field(description="Frame URLs in playback order")
    total_frames: int
    failures: list[FrameFailureInfo] = Field(default_factory=list)
    degraded: list[DegradedFrameInfo] = Field(default_factory=list)


class ExportRequest(BaseModel):
    """Request to encode a processed upload as an animation."""

    id: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    format: Literal["gif", "mp4"]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    task: str = Field(description="Model task: 'face_detection' or 'body_detection'")
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
