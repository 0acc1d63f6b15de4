#!/usr/bin/env python3
"""Manual calibration tool for the KvK DKP tracker.

Provides commands for capturing screenshots from the emulator, drawing the
configured tap points and OCR regions on a screenshot, and walking the root
navigation path step by step.

Subcommands::

    capture    Take labelled screenshots from the device interactively.
    mark       Draw navigation points, list rows and OCR regions on an image.
    walk       Tap through the root path and save a marked frame per step.

Usage::

    python calibrate.py capture
    python calibrate.py mark debug/calibrate_20250101_120000_list.png
    python calibrate.py mark debug/profile.png --pages profile
    python calibrate.py walk
"""

import argparse
import logging
import sys
import time
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from capture import capture_screen
from config import (
    ADB_BIN,
    ADB_SERIAL,
    CAPTURE_PAGES,
    DEBUG_DIR,
    HEADER_ANCHOR_RECT,
    LIST_ROWS,
    NAV_ACTIONS,
    PLAUSIBILITY_RECT,
    ROOT_PATH,
    SETTLE_DELAY,
    Rect,
)
from detect import Detector
from device import AdbDevice
from navigate import Key, Navigator, Swipe, action_from_config

logger = logging.getLogger(__name__)

POINT_COLOR: tuple[int, int, int] = (0, 0, 255)
ROW_COLOR: tuple[int, int, int] = (0, 200, 255)
REGION_COLOR: tuple[int, int, int] = (0, 255, 0)
DETECTOR_COLOR: tuple[int, int, int] = (255, 128, 0)

Point = tuple[int, int, str]


# ---------------------------------------------------------------------------
# Drawing
# ---------------------------------------------------------------------------


def mark_points(
    frame: np.ndarray,
    points: Iterable[Point],
    color: tuple[int, int, int] = POINT_COLOR,
) -> np.ndarray:
    """Draw a labelled circle at each ``(x, y, label)`` on a copy of *frame*."""
    annotated = frame.copy()
    for x, y, label in points:
        cv2.circle(annotated, (x, y), 12, color, 3)
        cv2.putText(
            annotated, label, (x + 16, y - 12),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2,
        )
    return annotated


def mark_regions(
    frame: np.ndarray,
    regions: Iterable[tuple[str, Rect]],
    color: tuple[int, int, int] = REGION_COLOR,
) -> np.ndarray:
    """Draw a labelled rectangle for each ``(label, rect)`` on a copy of *frame*."""
    annotated = frame.copy()
    for label, (left, top, width, height) in regions:
        cv2.rectangle(annotated, (left, top), (left + width, top + height), color, 2)
        cv2.putText(
            annotated, label, (left, max(12, top - 6)),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1,
        )
    return annotated


def navigation_points(names: Iterable[str] = NAV_ACTIONS) -> list[Point]:
    """Tap points of the named navigation actions; key actions are skipped."""
    points = []
    for name in names:
        action = action_from_config(NAV_ACTIONS[name])
        if isinstance(action, Swipe):
            points.append((action.x1, action.y1, name))
        elif not isinstance(action, Key):
            points.append((action.x, action.y, name))
    return points


def page_regions(pages: Sequence[dict[str, Any]], names: Sequence[str] = ()) -> list[tuple[str, Rect]]:
    """OCR regions of the capture pages named in *names* (all when empty)."""
    return [
        (f"{page['name']}.{field}", rect)
        for page in pages
        if not names or page["name"] in names
        for field, rect in page["rois"].items()
    ]


def mark_calibration(frame: np.ndarray, pages: Sequence[str] = ()) -> np.ndarray:
    """Draw every calibrated point and region on a copy of *frame*."""
    annotated = mark_points(frame, navigation_points())
    annotated = mark_points(
        annotated, [(x, y, f"row{i}") for i, (x, y) in enumerate(LIST_ROWS)], ROW_COLOR
    )
    annotated = mark_regions(
        annotated,
        [("header", HEADER_ANCHOR_RECT), ("plausibility", PLAUSIBILITY_RECT)],
        DETECTOR_COLOR,
    )
    return mark_regions(annotated, page_regions(CAPTURE_PAGES, pages))


def save_frame(frame: np.ndarray, label: str) -> Path:
    """Write *frame* to ``DEBUG_DIR/calibrate_<timestamp>_<label>.png``."""
    DEBUG_DIR.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filepath = DEBUG_DIR / f"calibrate_{timestamp}_{label}.png"
    cv2.imwrite(str(filepath), frame)
    logger.info("Saved calibration frame: %s", filepath)
    return filepath


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_capture(device: AdbDevice) -> None:
    """Interactive labelled screenshot capture.

    Navigate the game manually between captures.
    """
    saved: list[Path] = []

    print()
    print("=" * 58)
    print("  KvK DKP Calibration - Capture Mode")
    print("=" * 58)
    print()
    print("  <label>   Capture screenshot -> calibrate_<ts>_<label>.png")
    print("  list      Show screenshots saved this session")
    print("  quit      Exit")
    print()

    while True:
        try:
            cmd = input("capture> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break

        if not cmd:
            continue
        if cmd in ("quit", "q", "exit"):
            break
        if cmd == "list":
            for path in saved or ["  No screenshots saved this session."]:
                print(f"  {path}")
            continue

        try:
            frame = capture_screen(device)
        except RuntimeError as exc:
            print(f"  Capture failed: {exc}")
            continue
        saved.append(save_frame(frame, cmd.replace(" ", "_")))
        print(f"  Saved: {saved[-1]}")

    print(f"\n{len(saved)} screenshot(s) saved to {DEBUG_DIR}/")


def cmd_mark(source: Path, pages: Sequence[str]) -> Path:
    """Annotate *source* with every calibrated point and region."""
    frame = cv2.imread(str(source))
    if frame is None:
        raise FileNotFoundError(f"Could not read image: {source}")
    return save_frame(mark_calibration(frame, pages), f"{source.stem}_marks")


def cmd_walk(device: AdbDevice, settle: float = SETTLE_DELAY) -> list[Path]:
    """Tap through ``ROOT_PATH``, saving a marked frame before and after each step.

    Jitter is disabled and nothing is verified: the point is to see where
    each nominal tap lands.
    """
    navigator = Navigator(
        device, lambda: capture_screen(device), Detector(), jitter_px=0, jitter_ms=0
    )
    saved = [save_frame(mark_calibration(navigator.capture()), "00_start")]
    for step, name in enumerate(ROOT_PATH, start=1):
        logger.info("Step %d: %s", step, name)
        navigator.run(name)
        time.sleep(settle)
        saved.append(
            save_frame(mark_calibration(navigator.capture()), f"{step:02d}_after_{name}")
        )
    return saved


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main() -> None:
    """Entry point - parse subcommand and dispatch."""
    parser = argparse.ArgumentParser(
        description="Manual calibration tool for the KvK DKP tracker.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Typical workflow:\n"
            "  1. python calibrate.py capture\n"
            "     Take screenshots of the city, rankings list and a profile.\n"
            "  2. python calibrate.py mark debug/<screenshot>.png\n"
            "     Check the marks land on the buttons and fields.\n"
            "  3. Update config.py with measured coordinates.\n"
            "  4. python calibrate.py walk\n"
            "     Replay the root path on the live game."
        ),
    )
    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("capture", help="Interactive labelled screenshot capture")

    mark_parser = subparsers.add_parser(
        "mark", help="Draw calibrated points and regions on a screenshot"
    )
    mark_parser.add_argument("source", type=Path, help="Screenshot to annotate")
    mark_parser.add_argument(
        "--pages",
        nargs="*",
        default=[],
        help="Capture pages whose OCR regions to draw (default: all)",
    )

    walk_parser = subparsers.add_parser(
        "walk", help="Tap through the root path, saving marked frames"
    )
    walk_parser.add_argument(
        "--settle", type=float, default=SETTLE_DELAY, help="Seconds to wait after each tap"
    )

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return

    try:
        if args.command == "mark":
            print(f"Marked image saved: {cmd_mark(args.source, args.pages)}")
        elif args.command == "capture":
            cmd_capture(AdbDevice(ADB_BIN, ADB_SERIAL))
        elif args.command == "walk":
            for path in cmd_walk(AdbDevice(ADB_BIN, ADB_SERIAL), args.settle):
                print(f"  {path}")
    except (FileNotFoundError, RuntimeError) as exc:  # RuntimeError includes AdbError
        logger.error("Calibration failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
