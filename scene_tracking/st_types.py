from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

import cv2
import numpy as np


Identity = Union[int, str]


@dataclass
class Frame:
    idx: int
    ts_iso: str
    image: Any  # numpy array


@dataclass
class ReferenceGrid:
    """Checkerboard reference geometry.

    ``rows`` and ``cols`` count the inner corners of the board. Corners are
    laid out row-major, top to bottom then left to right, starting at
    ``origin`` and spaced by ``step`` scene units.
    """

    origin: tuple[float, float]
    step: float
    rows: int
    cols: int

    def __post_init__(self):
        if self.rows < 1 or self.cols < 1:
            raise ValueError(f"grid must be at least 1x1, got {self.rows}x{self.cols}")
        if self.step <= 0:
            raise ValueError(f"grid step must be positive, got {self.step}")

    @property
    def pattern_size(self) -> tuple[int, int]:
        # OpenCV wants (points per row, points per column)
        return self.cols, self.rows

    def corners(self) -> np.ndarray:
        x0, y0 = self.origin
        pts = [
            (x0 + c * self.step, y0 + r * self.step)
            for r in range(self.rows)
            for c in range(self.cols)
        ]
        return np.array(pts, dtype=np.float32)


@dataclass
class SceneExtent:
    width: int
    height: int

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass
class Transformation:
    matrix: Any  # (3,3) float64 ndarray
    calib_time: str = ""

    def __post_init__(self):
        m = np.array(self.matrix, dtype=np.float64)
        if m.shape != (3, 3):
            raise ValueError(f"transformation must be 3x3, got {m.shape}")
        self.matrix = m

    def apply(self, points) -> np.ndarray:
        """Map (N,2) camera pixels into scene pixels."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 1, 2)
        return cv2.perspectiveTransform(pts, self.matrix).reshape(-1, 2)


@dataclass
class Symbol:
    identity: Identity
    corners: Any  # (N,2) float ndarray in scene pixels


@dataclass
class MarkerObservation:
    identity: Identity
    corners: Any
    centroid: tuple[float, float]
    heading_deg: float


@dataclass
class PoseRecord:
    identity: Identity
    x: float
    y: float
    angle: float
    frame_idx: int = field(default=0, compare=False)
