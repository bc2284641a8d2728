from __future__ import annotations

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from camera import OpenCVCamera
from errors import DEVICE_UNAVAILABLE, ToolError


def _fake_cv2(opened: bool = True, frame_ok: bool = True) -> MagicMock:
    cv2 = MagicMock()
    capture = MagicMock()
    capture.isOpened.return_value = opened
    capture.read.return_value = (frame_ok, np.zeros((4, 4, 3), dtype=np.uint8) if frame_ok else None)
    cv2.VideoCapture.return_value = capture
    cv2.imencode.return_value = (True, np.frombuffer(b"\xff\xd8\xff\xd9", dtype=np.uint8))
    return cv2


def test_capture_returns_jpeg_bytes() -> None:
    cv2 = _fake_cv2()
    with patch("camera.cv2", cv2):
        camera = OpenCVCamera(device_index=1)
        assert not camera.is_connected()
        camera.connect()
        assert camera.is_connected()
        assert camera.capture_photo() == b"\xff\xd8\xff\xd9"
    cv2.VideoCapture.assert_called_once_with(1)
    assert cv2.imencode.call_args.args[0] == ".jpg"


def test_unopened_device_stays_disconnected() -> None:
    cv2 = _fake_cv2(opened=False)
    with patch("camera.cv2", cv2):
        camera = OpenCVCamera()
        camera.connect()
        assert not camera.is_connected()
        with pytest.raises(ToolError) as excinfo:
            camera.capture_photo()
    assert excinfo.value.code == DEVICE_UNAVAILABLE
    cv2.VideoCapture.return_value.release.assert_called_once()


def test_failed_read_raises_device_unavailable() -> None:
    with patch("camera.cv2", _fake_cv2(frame_ok=False)):
        camera = OpenCVCamera()
        camera.connect()
        with pytest.raises(ToolError) as excinfo:
            camera.capture_photo()
    assert excinfo.value.detail == "Camera returned no frame"


def test_missing_opencv_raises_device_unavailable() -> None:
    with patch("camera.cv2", None):
        with pytest.raises(ToolError):
            OpenCVCamera().connect()
