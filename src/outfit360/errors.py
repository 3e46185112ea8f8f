"""Exception hierarchy for the frame privacy pipeline."""

from __future__ import annotations


class Outfit360Error(Exception):
    """Base class for all Outfit360 errors."""


class ModelInitError(Outfit360Error):
    """A detector model could not be constructed.

    Fatal for every frame that needs the detector, so a batch aborts on it.
    """

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"Failed to initialize {kind} detector: {reason}")
        self.kind = kind
        self.reason = reason


class DetectionError(Outfit360Error):
    """Inference failed for a single frame."""

    def __init__(self, kind: str, reason: str) -> None:
        super().__init__(f"{kind} detection failed: {reason}")
        self.kind = kind
        self.reason = reason


class FrameIOError(Outfit360Error):
    """A frame file could not be read, decoded, encoded, or written."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class CompositingError(Outfit360Error):
    """Buffers or masks disagree on shape; indicates a coordinate-space bug."""


class MediaError(Outfit360Error):
    """The external frame extractor or encoder failed."""
