"""Camera acquisition for the scanning loop."""

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

import cv2  # type: ignore

from backend.config import CAMERA_HEIGHT, CAMERA_INDEX, CAMERA_SCAN_LIMIT, CAMERA_WIDTH
from backend.errors import CameraError

logger = logging.getLogger(__name__)


class CameraProvider(Protocol):
    """Anything that can hand out cv2.VideoCapture-like objects."""

    def open(self, index: int): ...

    def list_devices(self) -> list[int]: ...


class OpenCVCameraProvider:
    def __init__(self, scan_limit: int = CAMERA_SCAN_LIMIT):
        self.scan_limit = scan_limit

    def open(self, index: int):
        capture = cv2.VideoCapture(index)
        if not capture or not capture.isOpened():
            raise CameraError(f"Cannot open camera index {index}")
        return capture

    def list_devices(self) -> list[int]:
        # OpenCV has no device enumeration; try the first few indices.
        found: list[int] = []
        for index in range(self.scan_limit):
            capture = cv2.VideoCapture(index)
            try:
                if capture is not None and capture.isOpened():
                    found.append(index)
            finally:
                if capture is not None:
                    capture.release()
        return found


@dataclass
class CameraConfig:
    index: int = CAMERA_INDEX
    width: int | None = CAMERA_WIDTH
    height: int | None = CAMERA_HEIGHT


class CameraManager:
    """Owns one capture handle; every stop path goes through release()."""

    def __init__(self, provider: CameraProvider | None = None, config: CameraConfig | None = None):
        self.provider = provider or OpenCVCameraProvider()
        self.config = config or CameraConfig()
        self._capture = None
        self._lock = threading.Lock()

    @property
    def index(self) -> int:
        return self.config.index

    @property
    def is_active(self) -> bool:
        return self._capture is not None

    def acquire(self):
        with self._lock:
            if self._capture is not None:
                return self._capture
            try:
                capture = self.provider.open(self.config.index)
            except CameraError:
                raise
            except Exception as exc:
                raise CameraError(f"Could not access camera {self.config.index}: {exc}") from exc
            self._configure(capture)
            self._capture = capture
            logger.info("Camera %s acquired", self.config.index)
            return capture

    def _configure(self, capture) -> None:
        try:
            if self.config.width:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
            if self.config.height:
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        except Exception as exc:
            logger.warning("Unable to configure camera: %s", exc)

    def release(self) -> None:
        with self._lock:
            capture = self._capture
            self._capture = None
        if capture is not None:
            capture.release()
            logger.info("Camera %s released", self.config.index)

    def read(self):
        capture = self._capture
        if capture is None:
            raise CameraError("Camera is not active")
        ok, frame = capture.read()
        if not ok or frame is None:
            raise CameraError("Unable to read frame from camera")
        return frame

    def list_devices(self) -> list[int]:
        try:
            devices = list(self.provider.list_devices())
        except Exception as exc:
            logger.warning("Error enumerating cameras: %s", exc)
            return []
        # a held device may refuse a second open while probing
        if self._capture is not None and self.config.index not in devices:
            devices.append(self.config.index)
        return sorted(devices)

    def next_device_index(self) -> int:
        """Index of the device after the current one (wraps around)."""
        devices = self.list_devices()
        if not devices:
            return self.config.index
        if self.config.index not in devices:
            return devices[0]
        pos = devices.index(self.config.index)
        return devices[(pos + 1) % len(devices)]

    def select(self, index: int) -> None:
        """Point at another device. The current handle is released first."""
        self.release()
        self.config.index = index
