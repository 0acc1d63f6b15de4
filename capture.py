"""Screen capture, sub-image extraction and OCR preprocessing.

Frames are BGR numpy arrays of shape ``(SCREEN_HEIGHT, SCREEN_WIDTH, 3)``.
With the default ``adb`` backend a frame is the decoded PNG from
``screencap``; with the ``window`` backend it is an ``mss`` grab of the
emulator's render area on the host. No other module should import ``mss``.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import cv2
import mss
import numpy as np

from config import (
    CAPTURE_BACKEND,
    DEBUG_DIR,
    EMULATOR_WINDOW_ORIGIN,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
    Rect,
)
from device import AdbDevice
from exceptions import BoundsInvalid

logger = logging.getLogger(__name__)


def decode_png(data: bytes) -> np.ndarray:
    """Decode PNG bytes into a BGR frame.

    Raises:
        RuntimeError: If *data* is empty or not a decodable image.
    """
    if not data:
        raise RuntimeError(
            "Screenshot bytes are empty; check `adb devices` and that the "
            "emulator screen is on"
        )
    frame = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if frame is None:
        raise RuntimeError(f"Failed to decode screenshot ({len(data)} bytes)")
    return frame


def capture_window(origin: tuple[int, int] = EMULATOR_WINDOW_ORIGIN) -> np.ndarray:
    """Grab the emulator render area from the host screen.

    Returns:
        A BGR numpy array of shape ``(SCREEN_HEIGHT, SCREEN_WIDTH, 3)``.

    Raises:
        RuntimeError: If the grabbed frame has unexpected dimensions.
    """
    geometry = {
        "left": origin[0],
        "top": origin[1],
        "width": SCREEN_WIDTH,
        "height": SCREEN_HEIGHT,
    }
    with mss.mss() as sct:
        screenshot = sct.grab(geometry)

    # mss returns BGRA; drop alpha channel for OpenCV-compatible BGR.
    frame = np.array(screenshot)[:, :, :3]
    if frame.shape != (SCREEN_HEIGHT, SCREEN_WIDTH, 3):
        raise RuntimeError(
            f"Unexpected capture dimensions: expected "
            f"({SCREEN_HEIGHT}, {SCREEN_WIDTH}, 3), got {frame.shape}"
        )
    return frame


def capture_screen(device: AdbDevice, backend: str = CAPTURE_BACKEND) -> np.ndarray:
    """Capture the current emulator screen through the configured backend.

    Args:
        device: The ADB device (used by the ``adb`` backend).
        backend: ``"adb"`` or ``"window"``.

    Raises:
        AdbError: If ``screencap`` fails.
        RuntimeError: If the frame cannot be decoded.
        ValueError: If *backend* is unknown.
    """
    if backend == "adb":
        frame = decode_png(device.screencap())
    elif backend == "window":
        frame = capture_window()
    else:
        raise ValueError(f"Unknown capture backend: '{backend}'")
    logger.debug("Captured frame: shape=%s", frame.shape)
    return frame


def extract(image: np.ndarray, rect: Rect, label: str = "") -> np.ndarray:
    """Return the sub-image of *image* covered by *rect*.

    Args:
        image: Source frame.
        rect: ``(left, top, width, height)``.
        label: Region name used in the error message.

    Raises:
        BoundsInvalid: If the rectangle has a negative origin, a non-positive
            size, or extends past the image's width or height.
    """
    left, top, width, height = rect
    img_h, img_w = image.shape[:2]
    if (
        left < 0
        or top < 0
        or width <= 0
        or height <= 0
        or left + width > img_w
        or top + height > img_h
    ):
        raise BoundsInvalid(rect, (img_w, img_h), label)
    return image[top : top + height, left : left + width]


def prepare_for_ocr(crop: np.ndarray) -> np.ndarray:
    """Grayscale, contrast-stretch and upscale a crop 2x for OCR."""
    if crop.ndim == 3:
        gray = cv2.cvtColor(crop, cv2.COLOR_BGR2GRAY)
    else:
        gray = crop
    normalized = cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)
    height, width = normalized.shape[:2]
    return cv2.resize(
        normalized, (width * 2, height * 2), interpolation=cv2.INTER_NEAREST
    )


def save_debug_screenshot(
    context: str,
    device: Optional[AdbDevice] = None,
    frame: Optional[np.ndarray] = None,
) -> Optional[Path]:
    """Save a timestamped screenshot to the debug directory.

    Uses *frame* when given, otherwise captures a fresh one from *device*.

    Args:
        context: A short label included in the filename
            (e.g. ``"scan_failure_row3"``).

    Returns:
        The path to the saved PNG, or ``None`` if nothing could be captured.
    """
    if frame is None:
        if device is None:
            return None
        try:
            frame = capture_screen(device)
        except RuntimeError as exc:  # includes AdbError
            logger.warning("Debug screenshot skipped: %s", exc)
            return None

    DEBUG_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filepath = DEBUG_DIR / f"{timestamp}_{context}.png"
    cv2.imwrite(str(filepath), frame)
    logger.info("Debug screenshot saved: %s", filepath)
    return filepath
