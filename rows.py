"""Row selection on the City Hall rankings list.

Before committing to a profile open, each visible row's City Hall level is
OCR'd (cheap) and rows below ``ROW_MIN_LEVEL`` are skipped. The last visible
slot is exempt because its level column is clipped by the list's edge.

Some rows look tappable but never open a profile ("ghost rows"), e.g. while
the list is still animating. When a row fails its whole retry budget, the
next rows are tried with smaller budgets before giving up.
"""

import logging
from collections.abc import Sequence
from typing import Optional

import numpy as np

from config import (
    DIGITS,
    GHOST_FALLBACK_ATTEMPTS,
    LIST_ROWS,
    OPEN_ROW_ATTEMPTS,
    ROW_LEVEL_COLUMN,
    ROW_MIN_LEVEL,
    Rect,
)
from detect import RegionReader, Screen
from navigate import Navigator, Tap
from parse import digits_only, parse_number, read_region

logger = logging.getLogger(__name__)


class RowSelector:
    """Pick and open a row of the rankings list.

    Args:
        navigator: Used for taps, verification and recovery.
        rows: Tap targets of the visible row slots, top to bottom.
        level_column: ``(left, width, height)`` of the level column.
        min_level: Lowest City Hall level that is scanned.
        open_attempts: Retry budget for the requested row.
        fallback_attempts: Budgets for the rows after it, in order.
    """

    def __init__(
        self,
        navigator: Navigator,
        rows: Sequence[tuple[int, int]] = LIST_ROWS,
        level_column: tuple[int, int, int] = ROW_LEVEL_COLUMN,
        min_level: int = ROW_MIN_LEVEL,
        open_attempts: int = OPEN_ROW_ATTEMPTS,
        fallback_attempts: Sequence[int] = GHOST_FALLBACK_ATTEMPTS,
        read: RegionReader = read_region,
    ) -> None:
        self.navigator = navigator
        self.rows = tuple(rows)
        self.level_column = level_column
        self.min_level = min_level
        self.open_attempts = open_attempts
        self.fallback_attempts = tuple(fallback_attempts)
        self.read = read

    def level_rect(self, index: int) -> Rect:
        left, width, height = self.level_column
        _, y = self.rows[index]
        return (left, y - height // 2, width, height)

    def is_eligible(self, frame: np.ndarray, index: int) -> bool:
        """True if row *index* should be opened."""
        if index == len(self.rows) - 1:
            return True
        raw = self.read(frame, self.level_rect(index), f"row{index}_level", DIGITS)
        if not digits_only(raw):
            return False
        return parse_number(raw) >= self.min_level

    def open_row(self, index: int, attempts: int) -> bool:
        """Tap row *index* until a profile opens or *attempts* run out.

        Raises:
            NavigationUnreachable: If the list is lost between attempts and
                cannot be recovered.
        """
        x, y = self.rows[index]
        for attempt in range(1, attempts + 1):
            if self.navigator.transition(Tap(x, y), Screen.PROFILE_VIEW, attempts=1):
                logger.info("Opened row %d (attempt %d/%d)", index, attempt, attempts)
                return True
            if self.navigator.state != Screen.LIST_VIEW:
                self.navigator.ensure_list_view()
        return False

    def open_with_fallback(self, index: int) -> Optional[int]:
        """Open row *index*, falling back to the following rows.

        Returns:
            The index of the row that opened, or ``None`` if the whole chain
            failed. Chain entries past the last visible slot are skipped.
        """
        chain = [(index, self.open_attempts)]
        chain += [
            (index + offset, budget)
            for offset, budget in enumerate(self.fallback_attempts, start=1)
        ]
        for candidate, budget in chain:
            if candidate >= len(self.rows):
                break
            if self.open_row(candidate, budget):
                if candidate != index:
                    logger.warning(
                        "Row %d looks like a ghost row; used row %d instead",
                        index, candidate,
                    )
                return candidate
            logger.info("Row %d did not open after %d attempt(s)", candidate, budget)
        return None

    def select(self, start: int = 0) -> Optional[int]:
        """Open the first eligible row at or after *start*.

        Returns:
            The index of the opened row, or ``None``.
        """
        frame = self.navigator.capture()
        for index in range(start, len(self.rows)):
            if self.is_eligible(frame, index):
                return self.open_with_fallback(index)
            logger.info("Skipping row %d: level below %d or unreadable", index, self.min_level)
        return None
