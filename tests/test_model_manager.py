"""Tests for the ONNX model manager."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from outfit360.config import Settings
from outfit360.errors import ModelInitError
from outfit360.ml.model_manager import MODEL_REGISTRY, ModelTask, OnnxModelManager, get_spec

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(tmp_path: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": str(tmp_path / "models"),
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
        "model_repo": "acme/privacy-models",
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_known_model_lookup(self) -> None:
        spec = get_spec("ultraface_rfb_320")
        assert spec.name == "ultraface_rfb_320"
        assert spec.task is ModelTask.FACE_DETECTION
        assert spec.input_size == (320, 240)

    def test_unknown_model_raises_keyerror(self) -> None:
        with pytest.raises(KeyError, match="Unknown model"):
            get_spec("nonexistent_model")

    def test_every_task_has_a_model(self) -> None:
        assert {spec.task for spec in MODEL_REGISTRY.values()} == set(ModelTask)

    def test_default_models_are_registered(self) -> None:
        settings = Settings()
        assert get_spec(settings.face_detection_model).task is ModelTask.FACE_DETECTION
        assert get_spec(settings.body_detection_model).task is ModelTask.BODY_DETECTION


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        models_dir = tmp_path / "models"
        mock_download.return_value = str(models_dir / "version-RFB-320.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        path = mgr.ensure_downloaded("ultraface_rfb_320")

        mock_download.assert_called_once_with(
            repo_id="acme/privacy-models",
            filename="version-RFB-320.onnx",
            local_dir=str(models_dir),
        )
        assert path == models_dir / "version-RFB-320.onnx"
        assert models_dir.is_dir()

    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_local_file_wins_over_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        models_dir = tmp_path / "models"
        models_dir.mkdir()
        model_file = models_dir / "movenet_singlepose_lightning.onnx"
        model_file.touch()
        mgr = OnnxModelManager(_make_settings(tmp_path))

        path = mgr.ensure_downloaded("movenet_lightning")

        mock_download.assert_not_called()
        assert path == model_file

    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_missing_file_without_repo_names_models_dir(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, model_repo=None))

        with pytest.raises(ModelInitError, match="version-RFB-320.onnx") as excinfo:
            mgr.ensure_downloaded("ultraface_rfb_320")

        assert f"place it in {tmp_path / 'models'}" in str(excinfo.value)
        assert excinfo.value.kind == "face_detection"
        mock_download.assert_not_called()

    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_reuses_cached_path(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "elsewhere.onnx"
        model_file.touch()
        mgr = OnnxModelManager(_make_settings(tmp_path))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["ultraface_rfb_640"] = model_file

        assert mgr.ensure_downloaded("ultraface_rfb_640") == model_file
        mock_download.assert_not_called()

    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_download_failure_propagates(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.side_effect = OSError("network down")
        mgr = OnnxModelManager(_make_settings(tmp_path))
        with pytest.raises(OSError, match="network down"):
            mgr.ensure_downloaded("ultraface_rfb_320")

    @patch("outfit360.ml.model_manager.InferenceSession")
    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "models" / "version-RFB-320.onnx")
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session
        mgr = OnnxModelManager(_make_settings(tmp_path))

        session1 = mgr.get_session("ultraface_rfb_320")
        session2 = mgr.get_session("ultraface_rfb_320")

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()
        assert mock_session_cls.call_args.kwargs["providers"] == ["CPUExecutionProvider"]

    @patch("outfit360.ml.model_manager.InferenceSession")
    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_concurrent_first_calls_load_once(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "models" / "movenet_singlepose_lightning.onnx")

        def slow_session(*args: object, **kwargs: object) -> MagicMock:
            time.sleep(0.05)
            return MagicMock()

        mock_session_cls.side_effect = slow_session
        mgr = OnnxModelManager(_make_settings(tmp_path))

        sessions: list[object] = []
        threads = [
            threading.Thread(target=lambda: sessions.append(mgr.get_session("movenet_lightning"))) for _ in range(6)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert mock_session_cls.call_count == 1
        assert len({id(s) for s in sessions}) == 1

    @patch("outfit360.ml.model_manager.InferenceSession")
    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "models" / "version-RFB-320.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        assert mgr.get_loaded_models() == []
        mgr.get_session("ultraface_rfb_320")
        assert mgr.get_loaded_models() == ["ultraface_rfb_320"]

    def test_provider_building_cpu(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cuda", gpu_mem_limit=1024))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert provider_opts["gpu_mem_limit"] == 1024
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="openvino"))
        assert len(mgr._providers) == 2
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_session_options_use_thread_settings(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, intra_op_threads=3, inter_op_threads=2))
        assert mgr._session_options.intra_op_num_threads == 3
        assert mgr._session_options.inter_op_num_threads == 2

    @patch("outfit360.ml.model_manager.InferenceSession")
    @patch("outfit360.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "models" / "version-RFB-320.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))
        mgr.get_session("ultraface_rfb_320")
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    def test_unknown_model_raises_keyerror(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path))
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")
