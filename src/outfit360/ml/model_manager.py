"""Model manager: locate, download, load, and cache ONNX models.

Resolves model files from the local models directory, falling back to a
configured HuggingFace repo, then creates one InferenceSession per model
and keeps it for the lifetime of the process.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from outfit360.errors import ModelInitError

if TYPE_CHECKING:
    from outfit360.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"
    BODY_DETECTION = "body_detection"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX model."""

    name: str
    filename: str
    task: ModelTask
    license: str
    # (width, height) of the network input.
    input_size: tuple[int, int]
    # HuggingFace repo hosting the file; None means it must be provided locally.
    repo_id: str | None = None


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "ultraface_rfb_320": ModelSpec(
        name="ultraface_rfb_320",
        filename="version-RFB-320.onnx",
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        input_size=(320, 240),
    ),
    "ultraface_rfb_640": ModelSpec(
        name="ultraface_rfb_640",
        filename="version-RFB-640.onnx",
        task=ModelTask.FACE_DETECTION,
        license="MIT",
        input_size=(640, 480),
    ),
    "movenet_lightning": ModelSpec(
        name="movenet_lightning",
        filename="movenet_singlepose_lightning.onnx",
        task=ModelTask.BODY_DETECTION,
        license="Apache-2.0",
        input_size=(192, 192),
    ),
    "movenet_thunder": ModelSpec(
        name="movenet_thunder",
        filename="movenet_singlepose_thunder.onnx",
        task=ModelTask.BODY_DETECTION,
        license="Apache-2.0",
        input_size=(256, 256),
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves, loads, and caches ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._load_lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local model path, downloading from HuggingFace if a repo is configured.

        Raises:
            ModelInitError: If the file is not in ``models_dir`` and no repo is set.
        """
        spec = get_spec(model_name)

        cached = self._model_paths.get(model_name)
        if cached is not None and cached.exists():
            return cached

        local = self._models_dir / spec.filename
        if local.exists():
            self._model_paths[model_name] = local
            return local

        repo_id = self._settings.model_repo or spec.repo_id
        if repo_id is None:
            raise ModelInitError(
                spec.task.value,
                f"model file '{spec.filename}' not found; place it in {self._models_dir} "
                "or set OUTFIT360_MODEL_REPO to a HuggingFace repo that hosts it",
            )

        self._models_dir.mkdir(parents=True, exist_ok=True)
        downloaded = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=spec.filename,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed.

        Session construction is serialized so concurrent first calls for the
        same model build it once.
        """
        with self._lock:
            session = self._sessions.get(model_name)
            if session is not None:
                return session

        with self._load_lock:
            with self._lock:
                session = self._sessions.get(model_name)
            if session is not None:
                return session

            model_path = self.ensure_downloaded(model_name)
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
            with self._lock:
                self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
