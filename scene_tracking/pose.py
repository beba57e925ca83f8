"""Planar marker pose from a decoded corner polygon."""

import math
from typing import Tuple

import numpy as np

from .st_types import MarkerObservation, PoseRecord, Symbol

# Corner indices whose midpoint marks the printed top edge of a marker.
# OpenCV's QR detector orders corners top-left, top-right, bottom-right,
# bottom-left, so 0 and 1 span the top edge.
NORTH_CORNERS = (0, 1)


def centroid(corners) -> Tuple[float, float]:
    pts = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    if len(pts) == 0:
        raise ValueError("empty corner polygon")
    if len(pts) == 4:
        c = 0.25 * pts.sum(axis=0)
    else:
        c = pts.mean(axis=0)
    return float(c[0]), float(c[1])


def heading(corners, north: Tuple[int, int] = NORTH_CORNERS) -> float:
    """
    Angle in degrees of the vector from the centroid to the midpoint of the
    two north corners. 0 deg points along +x; positive angles turn towards +y.
    """
    pts = np.asarray(corners, dtype=np.float64).reshape(-1, 2)
    if len(pts) <= max(north):
        raise ValueError(f"polygon has {len(pts)} corners, need index {max(north)}")
    cx, cy = centroid(pts)
    mx, my = 0.5 * (pts[north[0]] + pts[north[1]])
    return math.degrees(math.atan2(my - cy, mx - cx))


def marker_pose(corners, north: Tuple[int, int] = NORTH_CORNERS) -> Tuple[float, float, float]:
    cx, cy = centroid(corners)
    return cx, cy, heading(corners, north)


def observe(symbol: Symbol, north: Tuple[int, int] = NORTH_CORNERS) -> MarkerObservation:
    corners = np.asarray(symbol.corners, dtype=np.float64).reshape(-1, 2)
    cx, cy, angle = marker_pose(corners, north)
    return MarkerObservation(symbol.identity, corners, (cx, cy), angle)


def to_record(obs: MarkerObservation, frame_idx: int = 0) -> PoseRecord:
    return PoseRecord(obs.identity, obs.centroid[0], obs.centroid[1], obs.heading_deg, frame_idx)
