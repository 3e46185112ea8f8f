"""Tests for the ffmpeg adapter (subprocess calls are mocked)."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from outfit360.errors import MediaError
from outfit360.media.ffmpeg import FfmpegRunner, frame_number, sorted_frames


def _process(returncode: int = 0, stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(b"", stderr))
    return process


def _touch_frames(directory: Path, names: list[str]) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_bytes(b"frame")


class TestFrameOrdering:
    def test_frame_number(self) -> None:
        assert frame_number("frame_0012.jpg") == 12
        assert frame_number("cover.jpg") == 0

    def test_sorted_numerically(self, tmp_path: Path) -> None:
        _touch_frames(tmp_path, ["frame_10.jpg", "frame_2.jpg", "frame_1.jpg", "notes.txt"])
        assert [p.name for p in sorted_frames(tmp_path, (".jpg",))] == ["frame_1.jpg", "frame_2.jpg", "frame_10.jpg"]


class TestExtractFrames:
    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_runs_ffmpeg_with_fps(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        out = tmp_path / "raw-frames"

        async def fake_exec(*args: str, **kwargs: object) -> MagicMock:
            _touch_frames(out, ["frame_0002.jpg", "frame_0001.jpg"])
            return _process()

        mock_exec.side_effect = fake_exec
        runner = FfmpegRunner("/usr/bin/ffmpeg", fps=12)

        frames = await runner.extract_frames(tmp_path / "input.mp4", out)

        assert [p.name for p in frames] == ["frame_0001.jpg", "frame_0002.jpg"]
        args = mock_exec.call_args.args
        assert args[0] == "/usr/bin/ffmpeg"
        assert "fps=12" in args
        assert args[-1] == str(out / "frame_%04d.jpg")

    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_no_frames_raises(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        mock_exec.return_value = _process()
        with pytest.raises(MediaError, match="No frames"):
            await FfmpegRunner().extract_frames(tmp_path / "input.mp4", tmp_path / "raw-frames")

    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_nonzero_exit_raises_with_stderr_tail(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        mock_exec.return_value = _process(1, b"line one\ninput.mp4: Invalid data found\n")
        with pytest.raises(MediaError, match="Invalid data found"):
            await FfmpegRunner().extract_frames(tmp_path / "input.mp4", tmp_path / "raw-frames")

    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_missing_binary_raises(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        mock_exec.side_effect = FileNotFoundError("ffmpeg")
        with pytest.raises(MediaError, match="Cannot start"):
            await FfmpegRunner().extract_frames(tmp_path / "input.mp4", tmp_path / "raw-frames")


class TestExport:
    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_gif_uses_palette_two_pass(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        frames = tmp_path / "processed-frames"
        _touch_frames(frames, ["frame_0001.jpg", "frame_0002.jpg"])
        mock_exec.return_value = _process()

        output = await FfmpegRunner().export(frames, tmp_path / "output.gif", "gif")

        assert output == tmp_path / "output.gif"
        assert mock_exec.call_count == 2
        first, second = (c.args for c in mock_exec.call_args_list)
        assert any("palettegen" in a for a in first)
        assert any("paletteuse" in a for a in second)
        assert second[-1] == str(tmp_path / "output.gif")
        # Temporary list and palette files are removed.
        assert sorted(p.name for p in tmp_path.iterdir()) == ["processed-frames"]

    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_mp4_single_pass(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        frames = tmp_path / "processed-frames"
        _touch_frames(frames, ["frame_0001.png"])
        mock_exec.return_value = _process()

        await FfmpegRunner().export(frames, tmp_path / "output.mp4", "mp4")

        args = mock_exec.call_args.args
        assert mock_exec.call_count == 1
        assert "libx264" in args
        assert "yuv420p" in args

    @patch("outfit360.media.ffmpeg.asyncio.create_subprocess_exec")
    async def test_concat_list_in_playback_order(self, mock_exec: MagicMock, tmp_path: Path) -> None:
        frames = tmp_path / "frames"
        _touch_frames(frames, ["frame_10.jpg", "frame_9.jpg"])
        listed: list[str] = []

        async def fake_exec(*args: str, **kwargs: object) -> MagicMock:
            list_file = Path(args[args.index("-i") + 1])
            listed.extend(list_file.read_text().splitlines())
            return _process()

        mock_exec.side_effect = fake_exec
        await FfmpegRunner().export(frames, tmp_path / "output.mp4", "mp4")

        assert [line.rsplit("/", 1)[-1] for line in listed] == ["frame_9.jpg'", "frame_10.jpg'"]

    async def test_empty_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(MediaError, match="No frames"):
            await FfmpegRunner().export(tmp_path, tmp_path / "output.gif", "gif")
