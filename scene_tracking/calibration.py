"""
Checkerboard calibration of the camera-to-scene homography.

The engine detects the inner corners of a checkerboard in one frame, fits
the homography onto the reference corners and asks a reviewer whether the
reprojected frame looks right. Corner order from the detector is ambiguous
up to a half turn of the board, so a rejection triggers a single retry with
the detected corners reversed. A second rejection ends the calibration.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

import cv2
import numpy as np

from .errors import CalibrationRejected, ConfigurationError, CornersNotFound
from .services.geometry import save_transformation
from .st_types import ReferenceGrid, SceneExtent, Transformation

SUBPIX_WINDOW = (11, 11)
SUBPIX_CRITERIA = (cv2.TERM_CRITERIA_EPS + cv2.TERM_CRITERIA_MAX_ITER, 30, 0.1)
FALLBACK_EXTENT = SceneExtent(1200, 1200)


class CalibState(str, Enum):
    DETECTING = "detecting"
    FOUND = "found"
    NOT_FOUND = "not_found"
    AWAITING_CONFIRM = "awaiting_confirm"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    FAILED = "failed"


class Order(str, Enum):
    FORWARD = "forward"
    REVERSED = "reversed"


class Answer(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class ConfirmationProvider(ABC):
    @abstractmethod
    def confirm(self, prompt: str, image=None) -> Answer: ...

    def close(self) -> None:
        return None


class ScriptedConfirmation(ConfirmationProvider):
    """Replays pre-recorded answers; raises if asked more often than scripted."""

    def __init__(self, answers: Iterable[Answer | bool | str]):
        self._answers = [_as_answer(a) for a in answers]
        self.prompts: list[str] = []
        self.images: list = []

    def confirm(self, prompt: str, image=None) -> Answer:
        self.prompts.append(prompt)
        self.images.append(image)
        if not self._answers:
            raise ConfigurationError(f"no scripted answer left for: {prompt}")
        return self._answers.pop(0)


class ConsoleConfirmation(ConfirmationProvider):
    def __init__(self, read: Callable[[str], str] = input):
        self._read = read

    def confirm(self, prompt: str, image=None) -> Answer:
        while True:
            key = self._read(f"{prompt} Y/N ").strip().lower()
            if key in ("y", "yes"):
                return Answer.ACCEPT
            if key in ("n", "no"):
                return Answer.REJECT


class WindowConfirmation(ConfirmationProvider):
    """Shows the candidate image in an OpenCV window and waits for Y or N."""

    def __init__(self, window_name: str = "Reprojected image", poll_ms: int = 30,
                 logger: Optional[logging.Logger] = None):
        self.window_name = window_name
        self.poll_ms = poll_ms
        self.log = logger or logging.getLogger("scene_tracking.calibration")
        self._shown = False

    def confirm(self, prompt: str, image=None) -> Answer:
        if image is not None:
            cv2.imshow(self.window_name, image)
            self._shown = True
        self.log.info("%s Y/N", prompt)
        while True:
            key = cv2.waitKey(self.poll_ms) & 0xFF
            if key in (ord("y"), ord("Y")):
                return Answer.ACCEPT
            if key in (ord("n"), ord("N")):
                return Answer.REJECT

    def close(self) -> None:
        if self._shown:
            cv2.destroyWindow(self.window_name)
            self._shown = False


def _as_answer(value) -> Answer:
    if isinstance(value, Answer):
        return value
    if isinstance(value, bool):
        return Answer.ACCEPT if value else Answer.REJECT
    text = str(value).strip().lower()
    if text in ("y", "yes", "accept"):
        return Answer.ACCEPT
    if text in ("n", "no", "reject"):
        return Answer.REJECT
    raise ConfigurationError(f"not an answer: {value!r}")


@dataclass
class CalibrationResult:
    transform: Transformation
    order: Order
    image_corners: np.ndarray
    history: list[CalibState] = field(default_factory=list)
    calib_time: str = ""


class CalibrationEngine:
    def __init__(
        self,
        grid: ReferenceGrid,
        confirm: ConfirmationProvider,
        extent: Optional[SceneExtent] = None,
        refine: bool = True,
        logger: Optional[logging.Logger] = None,
    ):
        self.grid = grid
        self.extent = extent or FALLBACK_EXTENT
        self.confirm = confirm
        self.refine = refine
        self.log = logger or logging.getLogger("scene_tracking.calibration")
        self.ref_corners = grid.corners()
        self.history: list[CalibState] = []

    @property
    def state(self) -> Optional[CalibState]:
        return self.history[-1] if self.history else None

    def _enter(self, state: CalibState) -> None:
        self.history.append(state)
        self.log.debug("calibration state -> %s", state.value)

    def detect(self, image) -> np.ndarray:
        """Inner corners in natural detection order, shape (N, 2)."""
        found, corners = cv2.findChessboardCorners(image, self.grid.pattern_size)
        if not found or corners is None:
            raise CornersNotFound(
                f"Failed to find {self.grid.rows}x{self.grid.cols} chessboard corners."
            )
        if self.refine:
            gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
            corners = cv2.cornerSubPix(gray, corners, SUBPIX_WINDOW, (-1, -1), SUBPIX_CRITERIA)
        return corners.reshape(-1, 2).astype(np.float32)

    def homography(self, image_corners: np.ndarray) -> Transformation:
        M, _mask = cv2.findHomography(image_corners, self.ref_corners)
        if M is None:
            raise CornersNotFound("Detected corners are degenerate; no homography fits them.")
        return Transformation(M)

    def reproject(self, image, transform: Transformation):
        improj = cv2.warpPerspective(image, transform.matrix, self.extent.size)
        cv2.drawChessboardCorners(
            improj, self.grid.pattern_size, self.ref_corners.reshape(-1, 1, 2), True
        )
        return improj

    def _review(self, image, corners: np.ndarray, order: Order) -> tuple[Transformation, Answer]:
        transform = self.homography(corners)
        self._enter(CalibState.AWAITING_CONFIRM)
        answer = _as_answer(self.confirm.confirm(
            f"Is the result correct? ({order.value} corner order)",
            self.reproject(image, transform),
        ))
        return transform, answer

    def run(self, image) -> CalibrationResult:
        self.history = []
        self._enter(CalibState.DETECTING)
        try:
            corners = self.detect(image)
        except CornersNotFound:
            self._enter(CalibState.NOT_FOUND)
            raise
        self._enter(CalibState.FOUND)
        self.log.info("Chessboard corners found.")

        for order, pts in ((Order.FORWARD, corners), (Order.REVERSED, corners[::-1].copy())):
            transform, answer = self._review(image, pts, order)
            if answer is Answer.ACCEPT:
                self._enter(CalibState.ACCEPTED)
                return CalibrationResult(transform, order, pts, list(self.history))
            self._enter(CalibState.REJECTED)
            if order is Order.FORWARD:
                self.log.info("Performing reprojection with the reverse order...")

        self._enter(CalibState.FAILED)
        raise CalibrationRejected(
            "Could not calibrate successfully. Try improving the image resolution "
            "or placing the chessboard elsewhere."
        )

    def calibrate(self, image, save_path) -> CalibrationResult:
        """Run the review protocol and persist the accepted transformation."""
        result = self.run(image)
        result.calib_time = save_transformation(result.transform, save_path)
        result.transform.calib_time = result.calib_time
        self.log.info("Transformation matrix successfully saved at: %s", save_path)
        return result
