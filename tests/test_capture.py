"""Tests for capture.py - frame capture, extraction and debug screenshots."""

from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from capture import (
    capture_screen,
    capture_window,
    decode_png,
    extract,
    prepare_for_ocr,
    save_debug_screenshot,
)
from config import SCREEN_HEIGHT, SCREEN_WIDTH
from device import AdbError
from exceptions import BoundsInvalid


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _png_bytes(width: int = 32, height: int = 16) -> bytes:
    """Encode a small solid image as PNG."""
    image = np.full((height, width, 3), 120, dtype=np.uint8)
    ok, encoded = cv2.imencode(".png", image)
    assert ok
    return encoded.tobytes()


# ---------------------------------------------------------------------------
# decode_png / capture_screen
# ---------------------------------------------------------------------------

class TestDecodePng:
    """Tests for decode_png()."""

    def test_decodes_valid_png(self) -> None:
        """Valid PNG bytes decode to a BGR frame of the right shape."""
        frame = decode_png(_png_bytes(32, 16))
        assert frame.shape == (16, 32, 3)

    def test_empty_bytes_raise(self) -> None:
        """Empty screencap output is reported, not decoded."""
        with pytest.raises(RuntimeError, match="empty"):
            decode_png(b"")

    def test_garbage_raises(self) -> None:
        """Non-image bytes raise RuntimeError."""
        with pytest.raises(RuntimeError, match="Failed to decode"):
            decode_png(b"not a png at all")


class TestCaptureScreen:
    """Tests for capture_screen() backend dispatch."""

    def test_adb_backend_decodes_screencap(self) -> None:
        """The adb backend decodes the device's screencap output."""
        device = MagicMock()
        device.screencap.return_value = _png_bytes(40, 20)

        frame = capture_screen(device, backend="adb")

        device.screencap.assert_called_once()
        assert frame.shape == (20, 40, 3)

    @patch("capture.capture_window")
    def test_window_backend_uses_mss_grab(self, mock_window: MagicMock) -> None:
        """The window backend never touches adb."""
        device = MagicMock()
        mock_window.return_value = np.zeros((SCREEN_HEIGHT, SCREEN_WIDTH, 3), np.uint8)

        frame = capture_screen(device, backend="window")

        device.screencap.assert_not_called()
        assert frame.shape == (SCREEN_HEIGHT, SCREEN_WIDTH, 3)

    def test_unknown_backend_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown capture backend"):
            capture_screen(MagicMock(), backend="vnc")

    def test_adb_error_propagates(self) -> None:
        """A failed screencap surfaces as AdbError."""
        device = MagicMock()
        device.screencap.side_effect = AdbError("device offline")
        with pytest.raises(AdbError):
            capture_screen(device, backend="adb")


class TestCaptureWindow:
    """Tests for capture_window() via a mocked mss."""

    @patch("capture.mss.mss")
    def test_drops_alpha_channel(self, mock_mss: MagicMock) -> None:
        """BGRA grabs are returned as BGR."""
        sct = mock_mss.return_value.__enter__.return_value
        sct.grab.return_value = np.zeros((SCREEN_HEIGHT, SCREEN_WIDTH, 4), np.uint8)

        frame = capture_window(origin=(10, 20))

        assert frame.shape == (SCREEN_HEIGHT, SCREEN_WIDTH, 3)
        geometry = sct.grab.call_args[0][0]
        assert geometry["left"] == 10
        assert geometry["top"] == 20

    @patch("capture.mss.mss")
    def test_wrong_size_raises(self, mock_mss: MagicMock) -> None:
        sct = mock_mss.return_value.__enter__.return_value
        sct.grab.return_value = np.zeros((100, 100, 4), np.uint8)
        with pytest.raises(RuntimeError, match="Unexpected capture dimensions"):
            capture_window()


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------

class TestExtract:
    """Bounds behaviour of extract()."""

    @pytest.mark.parametrize(
        "rect",
        [
            (0, 0, 1, 1),
            (0, 0, SCREEN_WIDTH, SCREEN_HEIGHT),
            (SCREEN_WIDTH - 10, SCREEN_HEIGHT - 10, 10, 10),
            (640, 360, 200, 100),
        ],
    )
    def test_rect_inside_bounds_succeeds(self, frame: np.ndarray, rect) -> None:
        """Any rectangle fully inside the frame yields a crop of its size."""
        crop = extract(frame, rect)
        assert crop.shape[:2] == (rect[3], rect[2])

    @pytest.mark.parametrize(
        "rect",
        [
            (SCREEN_WIDTH - 10, 0, 11, 10),   # one pixel too wide
            (0, SCREEN_HEIGHT - 10, 10, 11),  # one pixel too tall
            (0, 0, SCREEN_WIDTH + 1, 10),
            (0, 0, 10, SCREEN_HEIGHT + 1),
            (-1, 0, 10, 10),
            (0, -1, 10, 10),
            (0, 0, 0, 10),
            (0, 0, 10, 0),
        ],
    )
    def test_rect_outside_bounds_raises(self, frame: np.ndarray, rect) -> None:
        """Rectangles exceeding width or height raise BoundsInvalid."""
        with pytest.raises(BoundsInvalid):
            extract(frame, rect)

    def test_error_carries_context(self, frame: np.ndarray) -> None:
        """The error names the region and the frame size."""
        with pytest.raises(BoundsInvalid, match="'power'") as info:
            extract(frame, (1200, 0, 100, 10), "power")
        assert info.value.rect == (1200, 0, 100, 10)
        assert info.value.image_size == (SCREEN_WIDTH, SCREEN_HEIGHT)

    def test_crop_is_the_right_pixels(self) -> None:
        image = np.zeros((10, 10, 3), np.uint8)
        image[2:4, 5:8] = 255
        crop = extract(image, (5, 2, 3, 2))
        assert (crop == 255).all()


class TestPrepareForOcr:
    """Tests for prepare_for_ocr()."""

    def test_grayscale_and_doubled(self) -> None:
        crop = np.zeros((15, 40, 3), np.uint8)
        crop[:, 20:] = 200
        prepared = prepare_for_ocr(crop)
        assert prepared.shape == (30, 80)

    def test_contrast_is_stretched(self) -> None:
        """Min-max normalization maps the darkest pixel to 0 and brightest to 255."""
        crop = np.full((4, 4), 100, np.uint8)
        crop[0, 0] = 150
        prepared = prepare_for_ocr(crop)
        assert prepared.min() == 0
        assert prepared.max() == 255


# ---------------------------------------------------------------------------
# save_debug_screenshot
# ---------------------------------------------------------------------------

class TestSaveDebugScreenshot:
    """Tests for save_debug_screenshot()."""

    def test_writes_given_frame(self, tmp_path, frame: np.ndarray) -> None:
        with patch("capture.DEBUG_DIR", tmp_path):
            path = save_debug_screenshot("scan_failure_row3", frame=frame)
        assert path is not None
        assert path.parent == tmp_path
        assert path.name.endswith("_scan_failure_row3.png")
        assert path.exists()

    def test_no_frame_and_no_device_returns_none(self, tmp_path) -> None:
        with patch("capture.DEBUG_DIR", tmp_path):
            assert save_debug_screenshot("ctx") is None
        assert list(tmp_path.iterdir()) == []

    def test_capture_failure_is_swallowed(self, tmp_path) -> None:
        """A dead device must not mask the original failure."""
        device = MagicMock()
        device.screencap.side_effect = AdbError("no devices/emulators found")
        with patch("capture.DEBUG_DIR", tmp_path):
            assert save_debug_screenshot("ctx", device) is None
