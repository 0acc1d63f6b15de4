"""Central configuration for the KvK DKP tracker.

This module is the single source of truth for all magic values: screen
coordinates, OCR regions, timing and jitter tunables, and storage settings.
Never hardcode these values elsewhere.

Coordinates are in device pixels for a 1280x720 emulator screen. Run
``python calibrate.py mark`` against a fresh screenshot after changing any
of them.

Deployment values (database URL, ADB serial, backends, spreadsheet ID) are
read from the environment; a ``.env`` file in the project root is loaded
first if present.
"""

import os
from pathlib import Path
from typing import Any, Final

from dotenv import load_dotenv

load_dotenv()

# A rectangle is (left, top, width, height) in device pixels.
Rect = tuple[int, int, int, int]

# ---------------------------------------------------------------------------
# Project paths
# ---------------------------------------------------------------------------

PROJECT_ROOT: Final[Path] = Path(__file__).resolve().parent
DEBUG_DIR: Final[Path] = PROJECT_ROOT / "debug"
OUT_DIR: Final[Path] = PROJECT_ROOT / "out"
LOG_DIR: Final[Path] = PROJECT_ROOT / "logs"

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

DATABASE_URL: Final[str] = os.getenv("DATABASE_URL", "sqlite:///dkp_tracker.db")
DATABASE_ECHO: Final[bool] = os.getenv("DATABASE_ECHO", "false").lower() == "true"

# ---------------------------------------------------------------------------
# Google Sheets export
# ---------------------------------------------------------------------------

# Path to the service account JSON key file. Never commit this file.
SERVICE_ACCOUNT_KEY_PATH: Final[Path] = Path(
    os.getenv("SERVICE_ACCOUNT_KEY_PATH", str(PROJECT_ROOT / "service_account.json"))
)
SPREADSHEET_ID: Final[str] = os.getenv("SPREADSHEET_ID", "")
SHEET_LATEST_TAB: Final[str] = "Latest"

# ---------------------------------------------------------------------------
# Device / emulator
# ---------------------------------------------------------------------------

ADB_BIN: Final[str] = os.getenv("ADB_BIN", "adb")
ADB_SERIAL: Final[str] = os.getenv("ADB_SERIAL", "")
ADB_TIMEOUT: Final[float] = 15.0

# "adb" captures through ``screencap``; "window" grabs the emulator window
# on the host with mss.
CAPTURE_BACKEND: Final[str] = os.getenv("CAPTURE_BACKEND", "adb")
# "adb" sends ``input`` commands; "window" drives the host mouse.
INPUT_BACKEND: Final[str] = os.getenv("INPUT_BACKEND", "adb")

SCREEN_WIDTH: Final[int] = 1280
SCREEN_HEIGHT: Final[int] = 720

# Host-screen position of the emulator's rendering area (window backends only).
EMULATOR_WINDOW_ORIGIN: Final[tuple[int, int]] = (
    int(os.getenv("EMULATOR_WINDOW_LEFT", "0")),
    int(os.getenv("EMULATOR_WINDOW_TOP", "0")),
)

# Android key codes.
KEYCODE_HOME: Final[int] = 3
KEYCODE_BACK: Final[int] = 4
KEYCODE_COPY: Final[int] = 278

# ---------------------------------------------------------------------------
# Timing (seconds unless noted)
# ---------------------------------------------------------------------------

SETTLE_DELAY: Final[float] = 0.7
SETTLE_JITTER: Final[float] = 0.15
PAGE_REDRAW_DELAY: Final[float] = 1.2
RECOVERY_WAIT: Final[float] = 2.0

# Attempts per verified transition before the transition is declared failed.
TRANSITION_ATTEMPTS: Final[int] = 3

# ---------------------------------------------------------------------------
# Input humanization
# ---------------------------------------------------------------------------

TAP_JITTER_PX: Final[int] = 4
DURATION_JITTER_MS: Final[int] = 40
MIN_GESTURE_MS: Final[int] = 50

# ---------------------------------------------------------------------------
# Clipboard capture
# ---------------------------------------------------------------------------

CLIPBOARD_POLL_INTERVAL: Final[float] = 0.15
DEVICE_CLIPBOARD_TIMEOUT: Final[float] = 2.0
HOST_CLIPBOARD_TIMEOUT: Final[float] = 1.5
# Shorter waits for the long-press retry pass.
RETRY_DEVICE_CLIPBOARD_TIMEOUT: Final[float] = 1.0
RETRY_HOST_CLIPBOARD_TIMEOUT: Final[float] = 0.8
LONG_PRESS_MS: Final[int] = 800

# ---------------------------------------------------------------------------
# OCR
# ---------------------------------------------------------------------------

TESSERACT_CMD: Final[str] = os.getenv("TESSERACT_CMD", "")
DIGITS: Final[str] = "0123456789"

# A player ID with fewer digits than this is treated as a weak read.
MIN_ID_DIGITS: Final[int] = 5

# ---------------------------------------------------------------------------
# Navigation actions
# ---------------------------------------------------------------------------
# Each entry is consumed by ``navigate.action_from_config``.

NAV_ACTIONS: Final[dict[str, dict[str, Any]]] = {
    # City view -> own profile (governor avatar)
    "open_profile": {"type": "tap", "x": 50, "y": 50},
    # Profile -> Rankings menu
    "open_rankings": {"type": "tap", "x": 300, "y": 600},
    # Rankings menu -> City Hall Level list
    "open_city_hall": {"type": "tap", "x": 1000, "y": 400},
    # Close button (X) of any overlay or profile window
    "close_overlay": {"type": "tap", "x": 1155, "y": 75},
    # Logical back gesture
    "back": {"type": "key", "code": KEYCODE_BACK},
    # Copy-name button next to the governor name on a profile
    "copy_name": {"type": "tap", "x": 745, "y": 157},
    # Profile -> "More Info" overlay with kill tiers and deads
    "open_more_info": {"type": "tap", "x": 330, "y": 610},
    # "More Info" overlay -> back to profile
    "close_more_info": {"type": "tap", "x": 1155, "y": 75},
}

# Path replayed from the city view to the rankings list during recovery.
ROOT_PATH: Final[tuple[str, ...]] = ("open_profile", "open_rankings", "open_city_hall")

# Two independent dismiss gestures used by recovery.
DISMISS_ACTIONS: Final[tuple[str, ...]] = ("close_overlay", "back")

# ---------------------------------------------------------------------------
# List view detection
# ---------------------------------------------------------------------------

# Title of the City Hall Level ranking screen.
HEADER_ANCHOR_RECT: Final[Rect] = (480, 38, 320, 44)
HEADER_KEYWORDS: Final[tuple[str, ...]] = ("city", "hall")

# City Hall level of the first list row; any level in range means the list is up.
PLAUSIBILITY_RECT: Final[Rect] = (1020, 203, 80, 34)
PLAUSIBLE_LEVEL_RANGE: Final[tuple[int, int]] = (1, 25)

# ---------------------------------------------------------------------------
# Rankings list rows
# ---------------------------------------------------------------------------

# Tap targets of the visible row slots, top to bottom.
LIST_ROWS: Final[tuple[tuple[int, int], ...]] = (
    (640, 220),
    (640, 300),
    (640, 380),
    (640, 460),
    (640, 540),
    (640, 620),
    (640, 690),
)

# Level column: (left, width, height); the row's y is the vertical centre.
ROW_LEVEL_COLUMN: Final[tuple[int, int, int]] = (1020, 80, 34)

# Rows below this City Hall level are not tracked.
ROW_MIN_LEVEL: Final[int] = 16

OPEN_ROW_ATTEMPTS: Final[int] = 3
# Budgets for the next rows tried when a row turns out to be a ghost row.
GHOST_FALLBACK_ATTEMPTS: Final[tuple[int, ...]] = (2, 1)

# ---------------------------------------------------------------------------
# Profile detection
# ---------------------------------------------------------------------------

PROFILE_ID_RECT: Final[Rect] = (560, 175, 170, 28)
PROFILE_METRIC_RECTS: Final[tuple[Rect, ...]] = (
    (700, 300, 180, 30),  # power
    (900, 300, 200, 30),  # kill points
)
MIN_PLAUSIBLE_METRIC: Final[int] = 1000

# ---------------------------------------------------------------------------
# Capture pages
# ---------------------------------------------------------------------------
# Pages are read in order. After reading a page, its "nav" action (if any)
# is performed. The last page must lead back to the profile.

NAME_FIELD: Final[str] = "name"
NAME_RECT: Final[Rect] = (440, 140, 300, 34)

CAPTURE_PAGES: Final[tuple[dict[str, Any], ...]] = (
    {
        "name": "profile",
        "rois": {
            "id": PROFILE_ID_RECT,
            "name": NAME_RECT,
            "power": (700, 300, 180, 30),
            "kp": (900, 300, 200, 30),
        },
        "nav": "open_more_info",
        "opens_overlay": True,
    },
    {
        "name": "more_info",
        "rois": {
            "dead": (900, 430, 200, 30),
            "t1": (560, 250, 180, 26),
            "t2": (560, 290, 180, 26),
            "t3": (560, 330, 180, 26),
            "t4": (560, 370, 180, 26),
            "t5": (560, 410, 180, 26),
        },
        "nav": "close_more_info",
        "opens_overlay": False,
    },
)

# ---------------------------------------------------------------------------
# KvK scoring
# ---------------------------------------------------------------------------

DEFAULT_KP_WEIGHT: Final[float] = 1.0
DEFAULT_DEAD_WEIGHT: Final[float] = 5.0

TARGET_KP_FACTOR: Final[float] = 2.2
TARGET_DEAD_DIVISOR: Final[float] = 87.0

TOP_LIMIT_DEFAULT: Final[int] = 10
TOP_LIMIT_MAX: Final[int] = 50
LATEST_LIMIT_MAX: Final[int] = 1000
