"""Planar scene calibration and QR marker tracking."""

from .calibration import CalibrationEngine
from .config import TrackerConfig
from .worker import TrackingWorker

__all__ = ["CalibrationEngine", "TrackerConfig", "TrackingWorker"]
