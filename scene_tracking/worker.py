from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import cv2

from .errors import DecoderError
from .pose import NORTH_CORNERS, observe, to_record
from .services.publisher import NullPublisher, Publisher
from .source import FrameSource
from .st_types import Frame, MarkerObservation
from .strategies.decode_qr import QrDecode
from .strategies.reproject import ReprojectStrategy

HIGHLIGHT = (0, 0, 255)  # BGR red
DISPLAY_WINDOW = "Found symbols"


@dataclass
class SessionSummary:
    frames_processed: int
    markers_seen: int
    publish_errors: int
    decode_errors: int
    avg_fps: float
    strategy: str
    cancelled: bool


class TrackingWorker:
    """
    Pull-warp-decode-publish loop for one tracking session.

    The worker owns its frame source for the whole session and releases it
    when the loop ends. ``stop()`` may be called from a signal handler or
    another thread; the flag is checked once per iteration, so the frame in
    flight is always finished and published before the loop exits.
    """

    def __init__(
        self,
        source: FrameSource,
        strategy: ReprojectStrategy,
        decoder: Optional[QrDecode] = None,
        publisher: Optional[Publisher] = None,
        logger: Optional[logging.Logger] = None,
        display: bool = False,
        north: tuple[int, int] = NORTH_CORNERS,
        max_frames: Optional[int] = None,
    ):
        self.source = source
        self.strategy = strategy
        self.decoder = decoder or QrDecode()
        self.publisher = publisher or NullPublisher()
        self.logger = logger or logging.getLogger("scene_tracking.track")
        self.display = display
        self.north = north
        self.max_frames = max_frames
        self._stop_event = threading.Event()
        self._window_open = False

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def process_frame(self, f: Frame) -> tuple[Frame, list[MarkerObservation]]:
        """Reproject one camera frame and decode the markers it shows."""
        gray = self.strategy.apply(f)
        symbols = self.decoder.decode(gray)
        return gray, [observe(s, self.north) for s in symbols]

    def _show(self, gray: Frame, observations: list[MarkerObservation]) -> None:
        draw = cv2.cvtColor(gray.image, cv2.COLOR_GRAY2BGR)
        for obs in observations:
            for x, y in obs.corners:
                cv2.circle(draw, (int(round(x)), int(round(y))), 6, HIGHLIGHT, 2)
            c = obs.corners
            north = 0.5 * (c[self.north[0]] + c[self.north[1]])
            cv2.arrowedLine(
                draw,
                (int(round(obs.centroid[0])), int(round(obs.centroid[1]))),
                (int(round(north[0])), int(round(north[1]))),
                HIGHLIGHT,
                2,
            )
        cv2.imshow(DISPLAY_WINDOW, draw)
        self._window_open = True
        cv2.waitKey(1)

    def run(self) -> SessionSummary:
        self.logger.info("tracking started (source=%s, strategy=%s)",
                         self.source.label, self.strategy.name)
        t0 = time.time()
        frames = 0
        markers = 0
        publish_errors = 0
        decode_errors = 0

        try:
            while not self._stop_event.is_set():
                if self.max_frames and frames >= self.max_frames:
                    break

                f = self.source.next_frame()

                try:
                    gray, observations = self.process_frame(f)
                except DecoderError as e:
                    decode_errors += 1
                    self.logger.warning("%s", e)
                    gray, observations = None, []

                if observations:
                    self.logger.info("frame=%d %d symbol(s) found", f.idx, len(observations))
                else:
                    self.logger.debug("frame=%d no symbol found", f.idx)

                for obs in observations:
                    markers += 1
                    self.logger.info(
                        "Data: \"%s\" - Angle: %.2f - Center: (%.1f, %.1f)",
                        obs.identity, obs.heading_deg, obs.centroid[0], obs.centroid[1],
                    )
                    try:
                        self.publisher.publish(to_record(obs, f.idx))
                    except Exception as e:
                        publish_errors += 1
                        self.logger.warning("Publish failed for marker %s: %s", obs.identity, e)

                if self.display and gray is not None:
                    self._show(gray, observations)
                else:
                    time.sleep(0)

                frames += 1
        finally:
            self.source.release()
            if self._window_open:
                cv2.destroyWindow(DISPLAY_WINDOW)
                self._window_open = False

        cancelled = self._stop_event.is_set()
        if cancelled:
            self.logger.info("Interruption received. Tracking stopped cleanly.")
        avg = frames / max(1e-6, (time.time() - t0))
        self.logger.info(
            "summary frames=%d markers=%d avg_fps=%.2f publish_errors=%d",
            frames, markers, avg, publish_errors,
        )
        return SessionSummary(
            frames, markers, publish_errors, decode_errors, avg, self.strategy.name, cancelled
        )
