"""Camera collaborator that grabs single JPEG frames with OpenCV."""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from errors import DEVICE_UNAVAILABLE, ToolError

try:
    import cv2
except Exception:  # pragma: no cover
    cv2 = None  # type: ignore

logger = logging.getLogger(__name__)


class OpenCVCamera:
    def __init__(self, device_index: int = 0, jpeg_quality: int = 85) -> None:
        self._device_index = device_index
        self._jpeg_quality = jpeg_quality
        self._capture: Optional[Any] = None
        self._lock = threading.Lock()

    def is_connected(self) -> bool:
        capture = self._capture
        return capture is not None and bool(capture.isOpened())

    def connect(self) -> None:
        if cv2 is None:
            raise ToolError(DEVICE_UNAVAILABLE, "opencv-python is not installed")
        with self._lock:
            if self.is_connected():
                return
            capture = cv2.VideoCapture(self._device_index)
            if not capture.isOpened():
                capture.release()
                logger.warning("Camera %s could not be opened", self._device_index)
                return
            self._capture = capture
            logger.info("Camera %s connected", self._device_index)

    def capture_photo(self) -> bytes:
        with self._lock:
            capture = self._capture
            if capture is None or not capture.isOpened():
                raise ToolError(DEVICE_UNAVAILABLE, "Camera is not connected")
            ok, frame = capture.read()
            if not ok or frame is None:
                raise ToolError(DEVICE_UNAVAILABLE, "Camera returned no frame")
            ok, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self._jpeg_quality])
            if not ok:
                raise ToolError(DEVICE_UNAVAILABLE, "Failed to encode photo")
            return encoded.tobytes()

    def release(self) -> None:
        with self._lock:
            capture = self._capture
            self._capture = None
        if capture is not None:
            capture.release()
