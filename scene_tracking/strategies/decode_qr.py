import logging

import cv2
import numpy as np

from ..errors import DecoderError
from ..st_types import Frame, Identity, Symbol

log = logging.getLogger("scene_tracking.decode")


def parse_identity(payload: str) -> Identity:
    """Numeric payloads become integer identities; anything else stays text."""
    text = payload.strip()
    if text.isdecimal():
        return int(text)
    return text


class QrDecode:
    """
    Strategy: decode QR markers in a single-channel frame.
    Returns a list[Symbol] with the payload identity and the 4 corner points
    in the frame's pixel coordinates. Symbols that are located but cannot be
    read are dropped.
    """

    def __init__(self):
        self._detector = cv2.QRCodeDetector()

    def decode(self, f: Frame) -> list[Symbol]:
        try:
            ok, payloads, points, _straight = self._detector.detectAndDecodeMulti(f.image)
        except cv2.error as exc:
            raise DecoderError(f"scan failed on frame {f.idx}: {exc}") from exc

        if not ok or points is None:
            return []

        symbols: list[Symbol] = []
        for payload, quad in zip(payloads, points):
            if not payload:
                log.debug("frame=%d located an unreadable symbol", f.idx)
                continue
            corners = np.asarray(quad, dtype=np.float64).reshape(-1, 2)
            symbols.append(Symbol(parse_identity(payload), corners))
        return symbols
