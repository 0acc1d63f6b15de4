"""End-to-end scan sessions.

One session is: reach the rankings list, pick and open a row, read every
capture page, assemble a ``PlayerRecord``, persist it, and return to the
list. Sessions are strictly sequential; the ledger is only written once a
complete, validated record exists, so an aborted session never leaves a
partial snapshot behind.

Failure handling per session:

* ``BoundsInvalid`` - calibration error, raised before any input is sent.
* ``NavigationUnreachable`` - the session is abandoned and the worker stops.
* ``RecognitionWeak`` - the ID was still weak after one recapture; the
  session is discarded and the worker moves on.
* ``ClipboardEmpty`` - handled here by OCR'ing the name region once.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import numpy as np

from capture import extract, save_debug_screenshot
from clipboard import FieldCapture
from config import CAPTURE_PAGES, DIGITS, MIN_ID_DIGITS, NAME_FIELD, PAGE_REDRAW_DELAY, Rect
from detect import RegionReader, Screen
from device import AdbDevice, AdbError
from exceptions import ClipboardEmpty, NavigationUnreachable, RecognitionWeak
from ledger import Ledger, ScanReport
from navigate import Navigator
from parse import PlayerRecord, is_weak_id, parse_player_record, read_region
from rows import RowSelector

logger = logging.getLogger(__name__)


@dataclass
class ScanSession:
    """Ephemeral state of one scan pass; discarded when the pass ends."""

    requested_index: int
    seed: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: Screen = Screen.UNKNOWN
    used_index: Optional[int] = None
    id_recaptures: int = 0
    name_source: str = ""


@dataclass
class ScanOutcome:
    """Result of ``ScanOrchestrator.run`` for one requested row."""

    requested_index: int
    used_index: Optional[int] = None
    record: Optional[PlayerRecord] = None
    report: Optional[ScanReport] = None
    error: Optional[str] = None
    fatal: bool = False

    @property
    def ok(self) -> bool:
        return self.record is not None and self.error is None


def _center(rect: Rect) -> tuple[int, int]:
    left, top, width, height = rect
    return (left + width // 2, top + height // 2)


class ScanOrchestrator:
    """Run single scan sessions against the rankings list.

    Args:
        navigator: Shared navigator (owns the input surface and detector).
        rows: Row selector for the rankings list.
        field_capture: Clipboard capture for the name field.
        ledger: Persistence target for validated records.
        pages: Capture pages, in order (see ``config.CAPTURE_PAGES``).
        read: Region OCR function, injectable for tests.
        name_field: ROI key captured by clipboard instead of OCR.
        copy_action: Named navigation action that copies the name.
        min_id_digits: Minimum digits for a trusted player ID.
        redraw_delay: Settle time after a page navigation.
    """

    def __init__(
        self,
        navigator: Navigator,
        rows: RowSelector,
        field_capture: FieldCapture,
        ledger: Ledger,
        pages: Sequence[dict[str, Any]] = CAPTURE_PAGES,
        read: RegionReader = read_region,
        name_field: str = NAME_FIELD,
        copy_action: str = "copy_name",
        min_id_digits: int = MIN_ID_DIGITS,
        redraw_delay: float = PAGE_REDRAW_DELAY,
    ) -> None:
        self.navigator = navigator
        self.rows = rows
        self.field_capture = field_capture
        self.ledger = ledger
        self.pages = tuple(pages)
        self.read = read
        self.name_field = name_field
        self.copy_action = copy_action
        self.min_id_digits = min_id_digits
        self.redraw_delay = redraw_delay
        self._layout_checked = False

    # ------------------------------------------------------------------
    # Layout validation
    # ------------------------------------------------------------------

    def check_layout(self, frame: np.ndarray) -> None:
        """Validate every calibrated region against *frame*.

        Raises:
            BoundsInvalid: If any page, row-level or detector region is out
                of bounds.
        """
        for label, rect in self.navigator.detector.rects:
            extract(frame, rect, label)
        for page in self.pages:
            for name, rect in page["rois"].items():
                extract(frame, rect, f"{page['name']}.{name}")
        for index in range(len(self.rows.rows) - 1):
            extract(frame, self.rows.level_rect(index), f"row{index}_level")
        logger.debug("Calibrated regions fit the %dx%d frame", frame.shape[1], frame.shape[0])

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def run(self, row_index: int) -> ScanOutcome:
        """Scan the first usable row at or after *row_index*.

        Raises:
            BoundsInvalid: On the first call, if the calibration does not fit
                the captured frame. Nothing has been tapped at that point.
        """
        if not self._layout_checked:
            self.check_layout(self.navigator.capture())
            self._layout_checked = True

        session = ScanSession(requested_index=row_index, seed=self.navigator.seed)
        outcome = ScanOutcome(requested_index=row_index)
        try:
            self.navigator.ensure_list_view()
            session.state = self.navigator.state

            used = self.rows.select(row_index)
            if used is None:
                outcome.error = f"no row at or after {row_index} opened a profile"
                logger.error("Scan of row %d failed: %s", row_index, outcome.error)
                return outcome
            session.used_index = outcome.used_index = used
            session.state = self.navigator.state

            texts = self.capture_fields(session)
            record = parse_player_record(texts, self.min_id_digits)
            outcome.record = record
            outcome.report = self.ledger.record_scan(record)
            logger.info(
                "Scanned row %d (requested %d): %d '%s' power=%d kp=%d dead=%d "
                "[name via %s, seed %d]",
                used, row_index, record.player_id, record.name, record.power,
                record.kill_points, record.dead, session.name_source, session.seed,
            )
        except (NavigationUnreachable, AdbError) as exc:
            outcome.error = str(exc)
            outcome.fatal = True
            logger.error(
                "Scan of row %d abandoned in state %s: %s",
                row_index, self.navigator.state.value, exc,
            )
        except RecognitionWeak as exc:
            outcome.error = str(exc)
            logger.error(
                "Scan of row %d discarded after %d ID recapture(s): %s",
                row_index, session.id_recaptures, exc,
            )
        finally:
            self.navigator.return_to_list()
        return outcome

    def capture_fields(self, session: ScanSession) -> dict[str, str]:
        """Read every capture page of the open profile.

        Returns:
            Raw text per ROI key, ready for ``parse_player_record``.
        """
        texts: dict[str, str] = {}
        for position, page in enumerate(self.pages):
            rois = page["rois"]
            frame = self.navigator.capture()
            for name, rect in rois.items():
                if name != self.name_field:
                    texts[name] = self.read(frame, rect, name, DIGITS)

            if position == 0 and "id" in rois and is_weak_id(texts["id"], self.min_id_digits):
                texts["id"] = self._recapture_id(session, rois["id"])

            if self.name_field in rois:
                texts[self.name_field] = self._capture_name(
                    session, frame, rois[self.name_field]
                )

            nav = page.get("nav")
            if nav:
                self.navigator.run(nav)
                self.navigator.settle(self.redraw_delay)
                self.navigator.state = (
                    Screen.OVERLAY if page.get("opens_overlay") else Screen.PROFILE_VIEW
                )
                session.state = self.navigator.state
        return texts

    def _recapture_id(self, session: ScanSession, rect: Rect) -> str:
        session.id_recaptures += 1
        logger.info("Weak ID read; recapturing once")
        return self.read(self.navigator.capture(), rect, "id", DIGITS)

    def _capture_name(self, session: ScanSession, frame: np.ndarray, rect: Rect) -> str:
        try:
            text = self.field_capture.copy_text(
                self.name_field, self.navigator.action(self.copy_action), _center(rect)
            )
            session.name_source = "clipboard"
            return text
        except ClipboardEmpty as exc:
            logger.warning("%s; reading the name by OCR", exc)
            session.name_source = "ocr"
            return self.read(frame, rect, self.name_field, None)


@dataclass
class ScanSummary:
    """Outcomes of one ``ScanWorker.run`` call."""

    outcomes: list[ScanOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def scanned(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)


class ScanWorker:
    """Sequential worker running one session per requested row.

    Args:
        orchestrator: Runs the individual sessions.
        device: Used for a debug screenshot of each failed session.
    """

    def __init__(self, orchestrator: ScanOrchestrator, device: Optional[AdbDevice] = None) -> None:
        self.orchestrator = orchestrator
        self.device = device

    def run(self, indices: Iterable[int]) -> ScanSummary:
        summary = ScanSummary()
        for index in indices:
            outcome = self.orchestrator.run(index)
            summary.outcomes.append(outcome)
            if outcome.ok:
                continue
            save_debug_screenshot(f"scan_failure_row{index}", self.device)
            if outcome.fatal:
                logger.error("Navigation unreachable; stopping after row %d", index)
                summary.aborted = True
                break
        logger.info(
            "Scan finished: %d scanned, %d failed%s",
            summary.scanned, summary.failed, " (aborted)" if summary.aborted else "",
        )
        return summary
