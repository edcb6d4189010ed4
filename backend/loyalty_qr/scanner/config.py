from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping


@dataclass(frozen=True)
class ScanConfig:
    """
    Camera and decode settings for one scanner session.

    qrbox is the square detection region, in frame pixels, centred in the
    aspect-ratio-cropped frame. It is clamped to the frame if larger.
    """
    fps: int = 10
    qrbox_width: int = 280
    qrbox_height: int = 280
    aspect_ratio: float = 1.0
    facing_mode: str = "environment"
    success_delay: float = 0.75  # seconds the success banner stays up before the callback

    def __post_init__(self):
        if self.fps <= 0:
            raise ValueError("fps must be > 0")
        if self.qrbox_width <= 0 or self.qrbox_height <= 0:
            raise ValueError("qrbox dimensions must be > 0")
        if self.aspect_ratio <= 0:
            raise ValueError("aspect_ratio must be > 0")
        if self.success_delay < 0:
            raise ValueError("success_delay must be >= 0")

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps

    @classmethod
    def from_app_config(cls, config: Mapping) -> "ScanConfig":
        qrbox = int(config.get("SCANNER_QRBOX", 280))
        return cls(
            fps=int(config.get("SCANNER_FPS", 10)),
            qrbox_width=qrbox,
            qrbox_height=qrbox,
            success_delay=int(config.get("SCANNER_SUCCESS_DELAY_MS", 750)) / 1000.0,
        )
