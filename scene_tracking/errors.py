"""Failure taxonomy shared by the calibration and tracking tools."""


class TrackingError(Exception):
    exit_code = 1


class ConfigurationError(TrackingError):
    exit_code = 2


class GeometryNotFound(TrackingError):
    pass


class MalformedGeometry(TrackingError):
    pass


class GeometryWriteError(TrackingError):
    pass


class SourceUnavailable(TrackingError):
    pass


class NoDeviceFound(SourceUnavailable):
    def __init__(self, first_index: int, last_index: int):
        super().__init__(
            f"Failed to connect to camera! Tried indices {first_index}..{last_index}"
        )
        self.first_index = first_index
        self.last_index = last_index


class FrameReadError(TrackingError, IOError):
    pass


class CornersNotFound(TrackingError):
    pass


class CalibrationRejected(TrackingError):
    pass


class DecoderError(TrackingError):
    pass


class PublishError(TrackingError):
    pass
