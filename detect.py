"""Screen identification from a single captured frame.

The list view is recognized by two independent signals, combined by logical
OR so that either one can be occluded (overlays commonly cover the header,
toasts commonly cover the first row):

* ``HeaderTextSignal`` - the screen title inside a fixed anchor rectangle
  contains all expected keywords.
* ``PlausibilitySignal`` - the number in the first row's level column falls
  inside a known valid range.

A profile is recognized by ``ProfileSignal``. All three are heuristics with
tunable thresholds, not guarantees.
"""

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Optional, Protocol

import numpy as np

from config import (
    DIGITS,
    HEADER_ANCHOR_RECT,
    HEADER_KEYWORDS,
    MIN_ID_DIGITS,
    MIN_PLAUSIBLE_METRIC,
    PLAUSIBILITY_RECT,
    PLAUSIBLE_LEVEL_RANGE,
    PROFILE_ID_RECT,
    PROFILE_METRIC_RECTS,
    Rect,
)
from parse import digits_only, parse_number, read_region

logger = logging.getLogger(__name__)

# (frame, rect, label, whitelist) -> text
RegionReader = Callable[[np.ndarray, Rect, str, Optional[str]], str]


class Screen(str, enum.Enum):
    """Logical screens the navigator can be on."""

    UNKNOWN = "unknown"
    LIST_VIEW = "list_view"
    PROFILE_VIEW = "profile_view"
    OVERLAY = "overlay"
    UNREACHABLE = "unreachable"


class ScreenSignal(Protocol):
    """One heuristic that decides whether a frame shows a given screen."""

    name: str

    def matches(self, frame: np.ndarray) -> bool: ...

    @property
    def rects(self) -> list[tuple[str, Rect]]:
        """Every region the signal reads, as ``(label, rect)``."""
        ...


@dataclass
class HeaderTextSignal:
    """Positive when the anchor rectangle's text contains every keyword."""

    rect: Rect = HEADER_ANCHOR_RECT
    keywords: tuple[str, ...] = HEADER_KEYWORDS
    read: RegionReader = field(default=read_region, repr=False)
    name: str = "header_text"

    @property
    def rects(self) -> list[tuple[str, Rect]]:
        return [("anchor", self.rect)]

    def matches(self, frame: np.ndarray) -> bool:
        text = self.read(frame, self.rect, self.name, None).lower()
        return all(keyword.lower() in text for keyword in self.keywords)


@dataclass
class PlausibilitySignal:
    """Positive when the number in ``rect`` is inside ``valid_range``."""

    rect: Rect = PLAUSIBILITY_RECT
    valid_range: tuple[int, int] = PLAUSIBLE_LEVEL_RANGE
    read: RegionReader = field(default=read_region, repr=False)
    name: str = "plausibility"

    @property
    def rects(self) -> list[tuple[str, Rect]]:
        return [("level", self.rect)]

    def matches(self, frame: np.ndarray) -> bool:
        raw = self.read(frame, self.rect, self.name, DIGITS)
        if not digits_only(raw):
            return False
        low, high = self.valid_range
        return low <= parse_number(raw) <= high


@dataclass
class ProfileSignal:
    """Positive when a profile's ID is long enough or a metric is plausible."""

    id_rect: Rect = PROFILE_ID_RECT
    metric_rects: Sequence[Rect] = PROFILE_METRIC_RECTS
    min_id_digits: int = MIN_ID_DIGITS
    min_metric: int = MIN_PLAUSIBLE_METRIC
    read: RegionReader = field(default=read_region, repr=False)
    name: str = "profile"

    @property
    def rects(self) -> list[tuple[str, Rect]]:
        return [("id", self.id_rect)] + [
            (f"metric{index}", rect) for index, rect in enumerate(self.metric_rects)
        ]

    def matches(self, frame: np.ndarray) -> bool:
        raw_id = self.read(frame, self.id_rect, "id", DIGITS)
        if len(digits_only(raw_id)) >= self.min_id_digits:
            return True
        for index, rect in enumerate(self.metric_rects):
            raw = self.read(frame, rect, f"metric{index}", DIGITS)
            if parse_number(raw) > self.min_metric:
                return True
        return False


class Detector:
    """Identify the current screen from a frame.

    Args:
        list_signals: Strategies for the list view, tried in order; the first
            positive one wins.
        profile_signal: Strategy for the profile view, consulted only when no
            list signal fires.
    """

    def __init__(
        self,
        list_signals: Optional[Sequence[ScreenSignal]] = None,
        profile_signal: Optional[ScreenSignal] = None,
    ) -> None:
        if list_signals is None:
            list_signals = (HeaderTextSignal(), PlausibilitySignal())
        self.list_signals = tuple(list_signals)
        self.profile_signal = profile_signal if profile_signal is not None else ProfileSignal()

    @property
    def rects(self) -> list[tuple[str, Rect]]:
        """Every region any signal reads, labelled ``<signal>.<region>``."""
        return [
            (f"{signal.name}.{label}", rect)
            for signal in (*self.list_signals, self.profile_signal)
            for label, rect in signal.rects
        ]

    def identify(self, frame: np.ndarray) -> Screen:
        """Return ``LIST_VIEW``, ``PROFILE_VIEW`` or ``UNKNOWN`` for *frame*."""
        for signal in self.list_signals:
            if signal.matches(frame):
                logger.debug("List view detected by %s signal", signal.name)
                return Screen.LIST_VIEW
        if self.profile_signal.matches(frame):
            logger.debug("Profile view detected")
            return Screen.PROFILE_VIEW
        return Screen.UNKNOWN
