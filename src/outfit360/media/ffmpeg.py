"""ffmpeg adapter: frame extraction and GIF/MP4 export."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Literal

from outfit360.errors import MediaError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

ExportFormat = Literal["gif", "mp4"]

FRAME_PATTERN = "frame_%04d"
_DIGITS = re.compile(r"\d+")

# Exports play back at quarter speed.
_SLOWDOWN = "setpts=4*PTS"
_GIF_SCALE = "scale=800:-1:flags=lanczos"
_MP4_SCALE = "scale=1280:-2"


def frame_number(filename: str) -> int:
    match = _DIGITS.search(filename)
    return int(match.group()) if match else 0


def sorted_frames(frames_dir: Path, suffixes: tuple[str, ...]) -> list[Path]:
    """Frame files in playback order (by the first number in the name)."""
    frames = [p for p in frames_dir.iterdir() if p.is_file() and p.suffix.lower() in suffixes]
    return sorted(frames, key=lambda p: (frame_number(p.name), p.name))


class FfmpegRunner:
    """Runs the ffmpeg binary as a subprocess."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", fps: int = 24, frame_suffix: str = ".jpg") -> None:
        self._ffmpeg = ffmpeg_path
        self._fps = fps
        self._frame_suffix = frame_suffix

    async def extract_frames(self, video_path: Path, output_dir: Path) -> list[Path]:
        """Split a video into numbered stills and return them in order.

        Raises:
            MediaError: If ffmpeg fails or produces no frames.
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        pattern = output_dir / f"{FRAME_PATTERN}{self._frame_suffix}"
        await self._run("-y", "-i", str(video_path), "-vf", f"fps={self._fps}", str(pattern))

        frames = sorted_frames(output_dir, (self._frame_suffix,))
        if not frames:
            raise MediaError(f"No frames extracted from {video_path.name}")
        logger.info("Extracted %d frame(s) from %s", len(frames), video_path.name)
        return frames

    async def export(self, frames_dir: Path, output_path: Path, fmt: ExportFormat) -> Path:
        """Encode the frames of a directory into a GIF or MP4.

        Raises:
            MediaError: If there are no frames or ffmpeg fails.
        """
        frames = sorted_frames(frames_dir, (".jpg", ".jpeg", ".png"))
        if not frames:
            raise MediaError(f"No frames to export in {frames_dir}")

        list_file = output_path.with_name(f"{output_path.stem}_frames.txt")
        list_file.write_text("\n".join(f"file '{p.resolve()}'" for p in frames))
        concat = ("-y", "-f", "concat", "-safe", "0", "-i", str(list_file))
        try:
            if fmt == "gif":
                await self._export_gif(concat, output_path)
            else:
                await self._run(
                    *concat,
                    "-c:v", "libx264", "-preset", "slow", "-crf", "22", "-pix_fmt", "yuv420p",
                    "-vf", f"{_SLOWDOWN},{_MP4_SCALE}",
                    "-movflags", "+faststart",
                    str(output_path),
                )  # fmt: skip
        finally:
            list_file.unlink(missing_ok=True)

        logger.info("Exported %d frame(s) to %s", len(frames), output_path)
        return output_path

    async def _export_gif(self, concat: tuple[str, ...], output_path: Path) -> None:
        palette = output_path.with_name(f"{output_path.stem}_palette.png")
        try:
            await self._run(*concat, "-vf", f"{_SLOWDOWN},{_GIF_SCALE},palettegen=stats_mode=full", str(palette))
            await self._run(
                *concat,
                "-i", str(palette),
                "-lavfi",
                f"{_SLOWDOWN},{_GIF_SCALE}[x];[x][1:v]paletteuse=dither=bayer:bayer_scale=5:diff_mode=rectangle",
                "-f", "gif",
                str(output_path),
            )  # fmt: skip
        finally:
            palette.unlink(missing_ok=True)

    async def _run(self, *args: str) -> None:
        logger.debug("Running %s %s", self._ffmpeg, " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                self._ffmpeg,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise MediaError(f"Cannot start {self._ffmpeg}: {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            tail = stderr.decode(errors="replace").strip().splitlines()[-5:]
            raise MediaError(f"ffmpeg exited with {process.returncode}: {' | '.join(tail)}")
