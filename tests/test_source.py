from unittest.mock import MagicMock

import cv2
import numpy as np
import pytest

from scene_tracking.errors import (
    ConfigurationError,
    FrameReadError,
    NoDeviceFound,
    SourceUnavailable,
)
from scene_tracking.source import (
    ImageFileSource,
    VideoCaptureSource,
    probe_devices,
    resolve,
    save_snapshot,
)
from scene_tracking.st_types import Frame


class FakeCapture:
    def __init__(self, opened: bool, frames=None):
        self.opened = opened
        self.frames = list(frames or [])
        self.released = False

    def isOpened(self):
        return self.opened

    def read(self):
        if not self.frames:
            return False, None
        return True, self.frames.pop(0)

    def release(self):
        self.released = True


def _factory(open_at=()):
    made = {}

    def factory(arg):
        cap = FakeCapture(arg in open_at, frames=[np.zeros((2, 2, 3), np.uint8)])
        made[arg] = cap
        return cap

    factory.made = made
    return factory


@pytest.mark.parametrize("name", ["123.png", "0.PNG", "7.jpg", "board.JPEG", "5.Jpg"])
def test_image_extensions_never_probe_devices(tmp_path, name):
    path = tmp_path / name
    cv2.imwrite(str(tmp_path / "real.png"), np.full((4, 4, 3), 200, np.uint8))
    (tmp_path / "real.png").replace(path)
    factory = _factory(open_at=range(100))

    src = resolve(str(path), capture_factory=factory)

    assert isinstance(src, ImageFileSource)
    assert not src.is_device
    assert factory.made == {}


def test_missing_image_is_unavailable_without_probing(tmp_path):
    factory = _factory(open_at=range(100))
    with pytest.raises(SourceUnavailable):
        resolve(str(tmp_path / "3.png"), capture_factory=factory)
    assert factory.made == {}


def test_image_source_yields_one_frame(tmp_path):
    path = tmp_path / "one.png"
    cv2.imwrite(str(path), np.full((4, 5, 3), 9, np.uint8))
    src = ImageFileSource(str(path))

    f = src.next_frame()
    assert f.idx == 1
    assert f.image.shape == (4, 5, 3)
    with pytest.raises(FrameReadError):
        src.next_frame()


def test_video_extension_opens_file():
    factory = _factory(open_at={"clip.AVI"})
    src = resolve("clip.AVI", capture_factory=factory)

    assert isinstance(src, VideoCaptureSource)
    assert not src.is_device
    assert list(factory.made) == ["clip.AVI"]


def test_video_that_cannot_open():
    with pytest.raises(SourceUnavailable):
        resolve("clip.avi", capture_factory=_factory())


def test_probe_stops_at_first_success():
    factory = _factory(open_at={7, 8})
    cap, index = probe_devices(4, capture_factory=factory)

    assert index == 7
    assert cap is factory.made[7]
    assert sorted(factory.made) == [4, 5, 6, 7]
    assert all(factory.made[i].released for i in (4, 5, 6))


def test_probe_exhausts_ten_indices():
    factory = _factory()
    with pytest.raises(NoDeviceFound) as info:
        probe_devices(3, capture_factory=factory)

    assert info.value.last_index == 12
    assert sorted(factory.made) == list(range(3, 13))


def test_resolve_device_index():
    factory = _factory(open_at={2})
    src = resolve("0", capture_factory=factory)

    assert src.is_device
    assert src.index == 2
    assert src.next_frame().idx == 1


def test_negative_index_is_configuration_error():
    factory = _factory(open_at=range(10))
    with pytest.raises(ConfigurationError):
        resolve("-1", capture_factory=factory)
    assert factory.made == {}


def test_non_numeric_descriptor_is_configuration_error():
    with pytest.raises(ConfigurationError):
        resolve("camera", capture_factory=_factory())


def test_video_read_failure_is_frame_read_error():
    src = VideoCaptureSource(FakeCapture(True), "cam")
    with pytest.raises(FrameReadError):
        src.next_frame()


def test_release_closes_capture():
    cap = MagicMock()
    with VideoCaptureSource(cap, "cam") as src:
        pass
    cap.release.assert_called_once()
    assert src.cap is None


def test_save_snapshot(tmp_path):
    out = save_snapshot(Frame(1, "ts", np.zeros((3, 3, 3), np.uint8)), tmp_path / "calib-capture.png")
    assert cv2.imread(out) is not None
