# Overview: Camera capture and QR decoding backends for the staff scanner.

"""
Cameras and decoders

The scanner controller talks to a Camera and a QRDecoder and nothing else,
so tests and kiosks can plug in their own capture source.

OpenCVCamera / OpenCVDecoder are the default backends:
- Devices are probed by index with cv2.VideoCapture
- Decoding runs cv2.QRCodeDetector on the central qrbox region only

A camera handle is an exclusive OS resource. stop() must always be called,
and must be safe to call more than once.
"""

from __future__ import annotations

from dataclasses import dataclass

import cv2

from .config import ScanConfig


class CameraError(Exception):
    """Raised when a camera cannot be enumerated or started."""
    pass


@dataclass(frozen=True)
class CameraDevice:
    id: int | str
    label: str
    facing_mode: str | None = None  # "environment", "user" or unknown


class Camera:
    """Capture interface the scanner controller drives."""

    def list_devices(self) -> list[CameraDevice]:
        raise NotImplementedError

    def start(self, device: CameraDevice, config: ScanConfig) -> None:
        raise NotImplementedError

    def read(self):
        """Return the next frame, or None if paused, stopped or no frame is ready."""
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def resume(self) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError

    @property
    def is_running(self) -> bool:
        raise NotImplementedError


class QRDecoder:
    """Extracts QR contents from a frame."""

    def decode(self, frame) -> str | None:
        raise NotImplementedError


def crop_scan_region(frame, config: ScanConfig):
    """
    Crop a frame to the configured aspect ratio, then to the centred qrbox.
    """
    height, width = frame.shape[:2]

    # Aspect-ratio crop (1.0 -> square)
    if width / height > config.aspect_ratio:
        crop_w, crop_h = int(height * config.aspect_ratio), height
    else:
        crop_w, crop_h = width, int(width / config.aspect_ratio)

    box_w = min(config.qrbox_width, crop_w)
    box_h = min(config.qrbox_height, crop_h)

    top = (height - box_h) // 2
    left = (width - box_w) // 2
    return frame[top:top + box_h, left:left + box_w]


class OpenCVDecoder(QRDecoder):
    def __init__(self, config: ScanConfig | None = None):
        self.config = config or ScanConfig()
        self._detector = cv2.QRCodeDetector()

    def decode(self, frame) -> str | None:
        if frame is None:
            return None
        region = crop_scan_region(frame, self.config)
        if region.size == 0:
            return None
        data, _points, _straight = self._detector.detectAndDecode(region)
        return data or None


class OpenCVCamera(Camera):
    """
    cv2.VideoCapture backed camera.

    OpenCV cannot tell front from rear cameras, so devices carry no
    facing_mode unless given one through facing_modes={index: mode}.
    indexes limits probing to the given device indexes.
    """

    def __init__(self, max_devices: int = 4, facing_modes: dict | None = None, indexes: list[int] | None = None):
        self.max_devices = max_devices
        self.indexes = list(indexes) if indexes is not None else list(range(max_devices))
        self.facing_modes = facing_modes or {}
        self._capture = None
        self._paused = False

    def list_devices(self) -> list[CameraDevice]:
        devices = []
        for index in self.indexes:
            capture = cv2.VideoCapture(index)
            try:
                if capture.isOpened():
                    devices.append(CameraDevice(
                        id=index,
                        label=f"Camera {index}",
                        facing_mode=self.facing_modes.get(index),
                    ))
            finally:
                capture.release()
        return devices

    def start(self, device: CameraDevice, config: ScanConfig) -> None:
        if self._capture is not None:
            raise CameraError("Camera already started")

        capture = cv2.VideoCapture(device.id)
        if not capture.isOpened():
            capture.release()
            raise CameraError("Failed to start camera. Please ensure permissions are granted.")

        capture.set(cv2.CAP_PROP_FPS, config.fps)
        self._capture = capture
        self._paused = False

    def read(self):
        if self._capture is None or self._paused:
            return None
        ok, frame = self._capture.read()
        return frame if ok else None

    def pause(self) -> None:
        # Feed stays open while paused; only frame delivery stops
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def stop(self) -> None:
        capture, self._capture = self._capture, None
        self._paused = False
        if capture is not None:
            capture.release()

    @property
    def is_running(self) -> bool:
        return self._capture is not None
