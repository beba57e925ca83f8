from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

from scene_tracking.errors import FrameReadError
from scene_tracking.st_types import Frame, ReferenceGrid, SceneExtent, Symbol

SQUARE_PX = 40
MARGIN_PX = 60


def make_checkerboard(rows: int, cols: int, square: int = SQUARE_PX, margin: int = MARGIN_PX):
    """BGR image of a board with ``rows`` x ``cols`` inner corners on white."""
    sq_rows, sq_cols = rows + 1, cols + 1
    h = sq_rows * square + 2 * margin
    w = sq_cols * square + 2 * margin
    img = np.full((h, w), 255, dtype=np.uint8)
    for r in range(sq_rows):
        for c in range(sq_cols):
            if (r + c) % 2 == 0:
                y0 = margin + r * square
                x0 = margin + c * square
                img[y0:y0 + square, x0:x0 + square] = 0
    return cv2.cvtColor(img, cv2.COLOR_GRAY2BGR)


def ideal_corners(rows: int, cols: int, square: int = SQUARE_PX, margin: int = MARGIN_PX):
    return np.array(
        [(margin + (c + 1) * square, margin + (r + 1) * square)
         for r in range(rows) for c in range(cols)],
        dtype=np.float32,
    )


def write_text(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


class ListSource:
    """Frame source replaying images; pulls past the end fail like a dead camera."""

    is_device = False

    def __init__(self, images, repeat: bool = False):
        self.images = list(images)
        self.repeat = repeat
        self.label = "list"
        self.idx = 0
        self.released = False

    def next_frame(self):
        if not self.images:
            raise FrameReadError("end of stream")
        img = self.images[0] if self.repeat else self.images.pop(0)
        self.idx += 1
        return Frame(self.idx, "ts", img)

    def release(self):
        self.released = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()


class ScriptedDecoder:
    """Returns one canned batch of symbols per call, then the last batch forever."""

    def __init__(self, batches):
        self.batches = list(batches)
        self.calls = 0

    def decode(self, f):
        self.calls += 1
        if len(self.batches) > 1:
            return self.batches.pop(0)
        return list(self.batches[0]) if self.batches else []


class BlobDecoder:
    """Reports the bounding box of bright pixels as one marker with identity 1."""

    def decode(self, f):
        pts = cv2.findNonZero((f.image > 127).astype(np.uint8))
        if pts is None:
            return []
        x, y, w, h = cv2.boundingRect(pts)
        corners = np.array(
            [(x, y), (x + w, y), (x + w, y + h), (x, y + h)], dtype=np.float64
        )
        return [Symbol(1, corners)]


def square_symbol(identity, cx: float, cy: float, side: float = 20.0) -> Symbol:
    s = side / 2.0
    return Symbol(identity, np.array(
        [(cx - s, cy - s), (cx + s, cy - s), (cx + s, cy + s), (cx - s, cy + s)]
    ))


@pytest.fixture
def grid():
    return ReferenceGrid(origin=(100.0, 100.0), step=50.0, rows=4, cols=6)


@pytest.fixture
def board_image():
    return make_checkerboard(4, 6)


@pytest.fixture
def extent():
    return SceneExtent(600, 450)


@pytest.fixture
def geometry_files(tmp_path):
    board = write_text(
        tmp_path / "board.yml",
        "%YAML:1.0\n---\nSize: [ 4, 6 ]\nOrigin: [ 100., 100. ]\nStep: 50.\n",
    )
    scene = write_text(tmp_path / "scene.yml", "%YAML:1.0\n---\nSize: [ 600, 450 ]\n")
    return board, scene


class FakeGpuMat:
    """Host-memory stand-in for cv2.cuda_GpuMat."""

    def __init__(self, data=None):
        self.data = data

    def upload(self, arr):
        self.data = np.array(arr)

    def download(self):
        return self.data


def fake_cuda(count=1, compatible=(0,)):
    """cv2.cuda replacement that runs the device calls on the CPU."""

    def warp(src, M, dsize, flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_CONSTANT, borderValue=0):
        return FakeGpuMat(cv2.warpPerspective(
            src.data, M, dsize, flags=flags, borderMode=borderMode, borderValue=borderValue))

    def device_info(i):
        return SimpleNamespace(isCompatible=lambda: i in compatible, name=lambda: f"gpu{i}")

    return SimpleNamespace(
        setDevice=MagicMock(),
        warpPerspective=MagicMock(side_effect=warp),
        cvtColor=MagicMock(side_effect=lambda src, code: FakeGpuMat(cv2.cvtColor(src.data, code))),
        getCudaEnabledDeviceCount=lambda: count,
        DeviceInfo=device_info,
    )
