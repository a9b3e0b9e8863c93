from __future__ import annotations

import threading

from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from facelens.errors import MediaAccessDenied
from facelens.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class CameraConfig:
    index: int = 0
    width: Optional[int] = None
    height: Optional[int] = None


class Camera:
    """Thread-safe wrapper around `cv2.VideoCapture` for one webcam at a time."""

    def __init__(self, config: Optional[CameraConfig] = None):
        self.config = config or CameraConfig()
        self.index = int(self.config.index)
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def _open_locked(self, index: int) -> None:
        cap = cv2.VideoCapture(int(index))
        if not cap.isOpened():
            cap.release()
            raise MediaAccessDenied(f"cannot open camera {index} (missing device or permission refused)")
        if self.config.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self.config.width))
        if self.config.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self.config.height))
        self._cap = cap
        self.index = int(index)
        logger.info(f"Opened camera {index}")

    def _release_locked(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def open(self) -> "Camera":
        with self._lock:
            if self._cap is None:
                self._open_locked(self.index)
        return self

    def read(self) -> Optional[np.ndarray]:
        """Grab the next BGR frame, or None if the device produced nothing."""
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        if not ok or frame is None:
            return None
        return frame

    def reopen(self) -> None:
        with self._lock:
            self._release_locked()
            self._open_locked(self.index)

    def switch(self, index: Optional[int] = None) -> int:
        """Open another camera (default: the next index). Keeps the old one on failure."""
        target = self.index + 1 if index is None else int(index)
        with self._lock:
            previous = self.index
            self._release_locked()
            try:
                self._open_locked(target)
            except MediaAccessDenied:
                logger.warning(f"Camera {target} unavailable, staying on camera {previous}")
                self._open_locked(previous)
                raise
        return self.index

    def close(self) -> None:
        with self._lock:
            self._release_locked()

    def __enter__(self) -> "Camera":
        return self.open()

    def __exit__(self, *exc) -> None:
        self.close()
