"""
Reprojection of camera frames onto the scene plane.

Both strategies warp a frame through the calibration homography into the
scene extent and hand back a single-channel frame for decoding. The CUDA
strategy keeps the warp and color conversion on the device and downloads
only the gray result.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

import cv2

from ..st_types import Frame, SceneExtent, Transformation

log = logging.getLogger("scene_tracking.reproject")

WARP_FLAGS = cv2.INTER_LINEAR
BORDER_MODE = cv2.BORDER_CONSTANT
BORDER_VALUE = 0
MAX_GPU_INDEX = 10


class ReprojectStrategy(ABC):
    name = "base"

    def __init__(self, transform: Transformation, extent: SceneExtent):
        self.transform = transform
        self.extent = extent

    @abstractmethod
    def apply(self, f: Frame) -> Frame: ...


class CpuReproject(ReprojectStrategy):
    name = "cpu"

    def apply(self, f: Frame) -> Frame:
        warped = cv2.warpPerspective(
            f.image,
            self.transform.matrix,
            self.extent.size,
            flags=WARP_FLAGS,
            borderMode=BORDER_MODE,
            borderValue=BORDER_VALUE,
        )
        if warped.ndim == 3:
            warped = cv2.cvtColor(warped, cv2.COLOR_BGR2GRAY)
        return Frame(f.idx, f.ts_iso, warped)


class CudaReproject(ReprojectStrategy):
    name = "cuda"

    def __init__(self, transform: Transformation, extent: SceneExtent, device_index: int = 0):
        super().__init__(transform, extent)
        self.device_index = device_index
        cv2.cuda.setDevice(device_index)
        self._gframe = cv2.cuda_GpuMat()

    def apply(self, f: Frame) -> Frame:
        self._gframe.upload(f.image)
        gwarped = cv2.cuda.warpPerspective(
            self._gframe,
            self.transform.matrix,
            self.extent.size,
            flags=WARP_FLAGS,
            borderMode=BORDER_MODE,
            borderValue=BORDER_VALUE,
        )
        if f.image.ndim == 3:
            ggray = cv2.cuda.cvtColor(gwarped, cv2.COLOR_BGR2GRAY)
        else:
            ggray = gwarped
        return Frame(f.idx, f.ts_iso, ggray.download())


def probe_accelerator(max_devices: int = MAX_GPU_INDEX) -> Optional[int]:
    """Index of the first CUDA device OpenCV can use, or None."""
    try:
        count = cv2.cuda.getCudaEnabledDeviceCount()
        for index in range(min(count, max_devices)):
            info = cv2.cuda.DeviceInfo(index)
            if info.isCompatible():
                log.info("Detected GPU %s at index %d", info.name(), index)
                return index
    except Exception as exc:
        log.warning(
            "Could not search for compatible GPUs (%s). OpenCV may lack CUDA support.", exc
        )
        return None
    return None


def select_strategy(
    transform: Transformation,
    extent: SceneExtent,
    try_accelerator: bool = False,
    probe: Callable[[], Optional[int]] = probe_accelerator,
) -> ReprojectStrategy:
    if not try_accelerator:
        log.info("Accelerator probing disabled. Processing with CPU...")
        return CpuReproject(transform, extent)

    index = probe()
    if index is None:
        log.info("No compatible GPU detected. Processing with CPU only...")
        return CpuReproject(transform, extent)

    try:
        strategy = CudaReproject(transform, extent, index)
    except cv2.error as exc:
        log.warning("GPU %d unusable (%s). Processing with CPU only...", index, exc)
        return CpuReproject(transform, extent)
    log.info("Processing with GPU...")
    return strategy
