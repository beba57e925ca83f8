"""Frame sources for calibration and tracking.

A source descriptor is either a path to an image/video file or the first
camera index to try. Cameras are probed over consecutive indices.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import cv2

from .errors import ConfigurationError, FrameReadError, NoDeviceFound, SourceUnavailable
from .st_types import Frame

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")
VIDEO_EXTENSIONS = (".avi",)
PROBE_COUNT = 10

log = logging.getLogger("scene_tracking.source")


def _timestamp() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%S")


class FrameSource(ABC):
    is_device = False

    def __init__(self, label: str):
        self.label = label
        self.idx = 0

    @abstractmethod
    def next_frame(self) -> Frame:
        """Return the next frame or raise FrameReadError."""
        ...

    @abstractmethod
    def release(self) -> None: ...

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()


class ImageFileSource(FrameSource):
    """Single still image; the second pull is end of stream."""

    def __init__(self, path: str):
        super().__init__(path)
        self.image = cv2.imread(path, cv2.IMREAD_COLOR)
        if self.image is None:
            raise SourceUnavailable(f"Failed to load image from: {path}")

    def next_frame(self) -> Frame:
        if self.image is None:
            raise FrameReadError(f"End of stream: {self.label}")
        img, self.image = self.image, None
        self.idx += 1
        return Frame(self.idx, _timestamp(), img)

    def release(self) -> None:
        self.image = None


class VideoCaptureSource(FrameSource):
    """Video file or camera behind cv2.VideoCapture."""

    def __init__(self, cap: Any, label: str, is_device: bool = False, index: Optional[int] = None):
        super().__init__(label)
        self.cap = cap
        self.is_device = is_device
        self.index = index

    def next_frame(self) -> Frame:
        if self.cap is None:
            raise FrameReadError(f"Source released: {self.label}")
        ok, img = self.cap.read()
        if not ok or img is None:
            raise FrameReadError(f"Failed to load image from source: {self.label}")
        self.idx += 1
        return Frame(self.idx, _timestamp(), img)

    def release(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None


def probe_devices(
    first_index: int,
    count: int = PROBE_COUNT,
    capture_factory: Callable[[int], Any] = cv2.VideoCapture,
) -> tuple[Any, int]:
    """Open the first camera in [first_index, first_index + count)."""
    last = first_index
    for index in range(first_index, first_index + count):
        last = index
        cap = capture_factory(index)
        if cap.isOpened():
            log.info("Camera connection successfully opened at index %d", index)
            return cap, index
        cap.release()
        log.debug("no camera at index %d", index)
    raise NoDeviceFound(first_index, last)


def parse_device_index(descriptor: str) -> int:
    try:
        index = int(str(descriptor).strip())
    except ValueError:
        raise ConfigurationError(
            f"Source is neither a supported file nor a camera index: {descriptor}"
        ) from None
    if index < 0:
        raise ConfigurationError(
            f"Camera index given is invalid: {descriptor}. Positive integer expected."
        )
    return index


def resolve(
    descriptor: str,
    image_extensions: Iterable[str] = IMAGE_EXTENSIONS,
    video_extensions: Iterable[str] = VIDEO_EXTENSIONS,
    probe_count: int = PROBE_COUNT,
    capture_factory: Callable[..., Any] = cv2.VideoCapture,
) -> FrameSource:
    suffix = Path(str(descriptor)).suffix.lower()
    if suffix in {e.lower() for e in image_extensions}:
        log.info("Source detected: image file.")
        return ImageFileSource(str(descriptor))
    if suffix in {e.lower() for e in video_extensions}:
        log.info("Source detected: video file.")
        cap = capture_factory(str(descriptor))
        if not cap.isOpened():
            cap.release()
            raise SourceUnavailable(f"Failed to open video file at: {descriptor}")
        return VideoCaptureSource(cap, str(descriptor))

    first = parse_device_index(descriptor)
    log.info("Source detected: camera.")
    cap, index = probe_devices(first, probe_count, capture_factory)
    return VideoCaptureSource(cap, f"camera:{index}", is_device=True, index=index)


def save_snapshot(frame: Frame, path) -> str:
    p = Path(path)
    if not cv2.imwrite(str(p), frame.image):
        raise SourceUnavailable(f"Failed to write captured frame to: {p}")
    return str(p)
