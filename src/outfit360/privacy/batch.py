"""Sanitize a directory of extracted frames into a parallel output directory."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from outfit360.errors import DetectionError, FrameIOError
from outfit360.ml.preprocessing import decode_image, encode_image
from outfit360.privacy.pipeline import build_pipeline

if TYPE_CHECKING:
    from collections.abc import Iterable

    from outfit360.ml.body_detector import PoseEstimator
    from outfit360.ml.face_detector import FaceDetector
    from outfit360.ml.inference import InferencePool
    from outfit360.privacy.detection import DetectorProvider
    from outfit360.privacy.pipeline import FrameOutcome, FramePipeline, PrivacyOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameFailure:
    filename: str
    kind: str
    reason: str


@dataclass(frozen=True)
class DegradedFrame:
    filename: str
    reason: str


@dataclass
class BatchResult:
    succeeded: list[str] = field(default_factory=list)
    failures: list[FrameFailure] = field(default_factory=list)
    degraded: list[DegradedFrame] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failures)


def list_frames(input_dir: Path, extensions: Iterable[str]) -> list[Path]:
    """Return frame files in ``input_dir`` with a matching suffix, sorted by name."""
    wanted = {ext.lower() for ext in extensions}
    return sorted(p for p in input_dir.iterdir() if p.is_file() and p.suffix.lower() in wanted)


class OutputGate:
    """Admits renames into the output directory until the batch stops waiting.

    Closing takes the same lock as a rename, so once :meth:`close` returns no
    further frame can land and any rename that raced it has completed.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def commit(self, tmp: Path, dst: Path) -> None:
        with self._lock:
            if self._closed:
                raise FrameIOError(str(dst), "batch abandoned before write")
            os.replace(tmp, dst)


def sanitize_file(
    pipeline: FramePipeline,
    src: Path,
    dst: Path,
    jpeg_quality: int = 95,
    gate: OutputGate | None = None,
) -> FrameOutcome:
    """Read, sanitize, and write a single frame.

    The output is written to a temporary sibling and renamed into place, so a
    failed frame never leaves a partial file behind.

    Raises:
        FrameIOError: If the frame cannot be read, decoded, encoded, or written.
    """
    try:
        data = src.read_bytes()
    except OSError as e:
        raise FrameIOError(str(src), f"read failed: {e}") from e
    try:
        image = decode_image(data)
    except ValueError as e:
        raise FrameIOError(str(src), str(e)) from e

    outcome = pipeline.run(image)

    try:
        encoded = encode_image(outcome.image, dst.suffix, jpeg_quality)
    except ValueError as e:
        raise FrameIOError(str(dst), str(e)) from e
    if gate is None:
        gate = OutputGate()
    elif gate.closed:
        raise FrameIOError(str(dst), "batch abandoned before write")

    tmp = dst.with_name(f".{dst.name}.tmp")
    try:
        tmp.write_bytes(encoded)
        gate.commit(tmp, dst)
    except FrameIOError:
        tmp.unlink(missing_ok=True)
        raise
    except OSError as e:
        tmp.unlink(missing_ok=True)
        raise FrameIOError(str(dst), f"write failed: {e}") from e
    return outcome


class FrameBatchProcessor:
    """Runs the privacy pipeline over every frame of a directory.

    Frames are independent and run concurrently on the inference pool.
    Per-frame I/O failures are collected into the :class:`BatchResult`;
    ``ModelInitError`` and ``CompositingError`` abort the whole batch.
    """

    def __init__(
        self,
        pool: InferencePool,
        face_provider: DetectorProvider[FaceDetector],
        body_provider: DetectorProvider[PoseEstimator],
        options: PrivacyOptions,
        *,
        extensions: Iterable[str] = (".jpg", ".jpeg", ".png"),
        jpeg_quality: int = 95,
        timeout: float | None = None,
    ) -> None:
        self._pool = pool
        self._face_provider = face_provider
        self._body_provider = body_provider
        self._options = options
        self._extensions = tuple(extensions)
        self._jpeg_quality = jpeg_quality
        self._timeout = timeout

    async def process_frames(
        self,
        input_dir: Path,
        output_dir: Path,
        *,
        blur_face: bool,
        blur_background: bool,
    ) -> BatchResult:
        frames = list_frames(input_dir, self._extensions)
        output_dir.mkdir(parents=True, exist_ok=True)
        pipeline = build_pipeline(
            self._options,
            self._face_provider,
            self._body_provider,
            blur_face=blur_face,
            blur_background=blur_background,
        )
        result = BatchResult()
        if not frames:
            logger.warning("No frames found in %s", input_dir)
            return result

        logger.info(
            "Processing %d frame(s) from %s (blur_face=%s, blur_background=%s)",
            len(frames),
            input_dir,
            blur_face,
            blur_background,
        )
        start = time.monotonic()
        gate = OutputGate()
        tasks = {
            asyncio.create_task(self._process_one(pipeline, path, output_dir / path.name, gate)): path.name
            for path in frames
        }
        done, pending = await asyncio.wait(tasks, timeout=self._timeout, return_when=asyncio.FIRST_EXCEPTION)
        if pending:
            gate.close()
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            # A frame renamed just before the gate closed is still reported as timed out.
            for task in pending:
                (output_dir / tasks[task]).unlink(missing_ok=True)

        for task, name in tasks.items():
            error = task.exception() if task in done else None
            if error is not None:
                gate.close()
                logger.error("Aborting batch on %s: %s", name, error)
                raise error

        for task, name in tasks.items():
            if task in pending:
                result.failures.append(FrameFailure(name, "timeout", "batch timeout exceeded"))
                continue
            record = task.result()
            if isinstance(record, FrameFailure):
                result.failures.append(record)
                continue
            result.succeeded.append(name)
            result.degraded.extend(DegradedFrame(name, reason) for reason in record.degraded)

        logger.info(
            "Batch finished in %.2fs: %d succeeded, %d failed, %d degraded",
            time.monotonic() - start,
            result.success_count,
            result.failure_count,
            len(result.degraded),
        )
        return result

    async def _process_one(
        self,
        pipeline: FramePipeline,
        src: Path,
        dst: Path,
        gate: OutputGate,
    ) -> FrameOutcome | FrameFailure:
        try:
            return await self._pool.run(
                sanitize_file, pipeline, src, dst, self._jpeg_quality, gate, timeout=None
            )
        except FrameIOError as e:
            logger.error("Frame %s failed: %s", src.name, e)
            return FrameFailure(src.name, "io", str(e))
        except DetectionError as e:
            logger.error("Frame %s dropped: %s", src.name, e)
            return FrameFailure(src.name, "detection", str(e))
