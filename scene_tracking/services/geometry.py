"""Reference geometry and transformation files.

All files use OpenCV's FileStorage YAML so that boards, scenes and
calibration outputs can be edited by hand or produced by other OpenCV tools.

Board file::

    %YAML:1.0
    Size: [ 5, 7 ]        # inner corners, rows then columns
    Origin: [ 100., 100. ]
    Step: 50.

``Size`` and ``Origin`` may also be written as maps
(``{ Rows: 5, Columns: 7 }`` and ``{ X: 100., Y: 100. }``).

Scene file: ``Size: [ width, height ]`` or ``Width``/``Height`` scalars.

Transformation file: ``calib_time`` (free text) and ``transform_mat`` (3x3).

The board ``Size`` list is read as rows then columns. Older board files that
stored ``[ columns, rows ]`` (the order of an OpenCV pattern size) load
transposed and must be rewritten before use. Transformation and scene files
are unaffected.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from ..errors import GeometryNotFound, GeometryWriteError, MalformedGeometry
from ..st_types import ReferenceGrid, SceneExtent, Transformation

CALIB_TIME_FORMAT = "%a %B %d %G - %X"


def _open_read(path) -> Any:
    p = Path(path)
    if not p.is_file():
        raise GeometryNotFound(f"File not found: {p}")
    try:
        fs = cv2.FileStorage(str(p), cv2.FILE_STORAGE_READ)
    except cv2.error as exc:
        raise MalformedGeometry(f"Cannot parse {p}: {exc}") from exc
    if not fs.isOpened():
        raise MalformedGeometry(f"Cannot parse {p}")
    return fs


def _require(fs, key: str, path) -> Any:
    node = fs.getNode(key)
    if node.empty():
        raise MalformedGeometry(f"Missing '{key}' in {path}")
    return node


def _read_pair(node, map_keys: tuple[str, str], what: str) -> tuple[float, float]:
    if node.isSeq() and node.size() == 2:
        return node.at(0).real(), node.at(1).real()
    if node.isMap():
        a, b = node.getNode(map_keys[0]), node.getNode(map_keys[1])
        if not (a.empty() or b.empty()):
            return a.real(), b.real()
    raise MalformedGeometry(f"'{what}' must be a pair or a {{{map_keys[0]}, {map_keys[1]}}} map")


def load_reference_grid(path) -> ReferenceGrid:
    fs = _open_read(path)
    try:
        size_n = _require(fs, "Size", path)
        orig_n = _require(fs, "Origin", path)
        step_n = _require(fs, "Step", path)

        rows, cols = _read_pair(size_n, ("Rows", "Columns"), "Size")
        origin = _read_pair(orig_n, ("X", "Y"), "Origin")
        if not step_n.isReal() and not step_n.isInt():
            raise MalformedGeometry(f"'Step' must be a number in {path}")
        step = step_n.real()
    finally:
        fs.release()

    try:
        return ReferenceGrid(origin=origin, step=step, rows=int(rows), cols=int(cols))
    except ValueError as exc:
        raise MalformedGeometry(f"{path}: {exc}") from exc


def load_scene_extent(path) -> SceneExtent:
    fs = _open_read(path)
    try:
        size_n = fs.getNode("Size")
        if not size_n.empty():
            w, h = _read_pair(size_n, ("Width", "Height"), "Size")
        else:
            w_n, h_n = fs.getNode("Width"), fs.getNode("Height")
            if w_n.empty() or h_n.empty():
                raise MalformedGeometry(f"Missing 'Size' or 'Width'/'Height' in {path}")
            w, h = w_n.real(), h_n.real()
    finally:
        fs.release()

    if w < 1 or h < 1:
        raise MalformedGeometry(f"Scene extent must be positive, got {w}x{h} in {path}")
    return SceneExtent(int(w), int(h))


def load_transformation(path) -> Transformation:
    fs = _open_read(path)
    try:
        M = _require(fs, "transform_mat", path).mat()
        calib_time = fs.getNode("calib_time").string()
    finally:
        fs.release()

    if M is None or np.asarray(M).shape != (3, 3):
        raise MalformedGeometry(f"'transform_mat' must be a 3x3 matrix in {path}")
    return Transformation(M, calib_time or "")


def save_transformation(transform: Transformation, path) -> str:
    """Write the matrix with a capture timestamp, replacing any existing file."""
    p = Path(path)
    stamp = time.strftime(CALIB_TIME_FORMAT)
    try:
        fs = cv2.FileStorage(str(p), cv2.FILE_STORAGE_WRITE)
    except cv2.error as exc:
        raise GeometryWriteError(f"Cannot write {p}: {exc}") from exc
    if not fs.isOpened():
        raise GeometryWriteError(f"Cannot write {p}")
    try:
        fs.write("calib_time", stamp)
        fs.write("transform_mat", np.asarray(transform.matrix, dtype=np.float64))
    finally:
        fs.release()
    return stamp
