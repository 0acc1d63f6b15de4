"""Input actions and the navigation state machine.

Every input goes through ``Navigator.perform``, which first passes the
nominal action through ``humanize`` so that repeated taps never land on the
exact same pixel with the exact same timing. ``humanize`` is a pure function
of the action and a seeded ``random.Random``; tests assert on nominal
actions and production uses a fresh seed per process.

Screen transitions follow one protocol: perform, settle, verify via the
detector, retry the same action up to a fixed budget. Reaching the list
view additionally has a three-step recovery policy (see
``Navigator.ensure_list_view``).
"""

import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional, Union

import numpy as np

from config import (
    DISMISS_ACTIONS,
    DURATION_JITTER_MS,
    LONG_PRESS_MS,
    MIN_GESTURE_MS,
    NAV_ACTIONS,
    RECOVERY_WAIT,
    ROOT_PATH,
    SETTLE_DELAY,
    SETTLE_JITTER,
    TAP_JITTER_PX,
    TRANSITION_ATTEMPTS,
)
from detect import Detector, Screen
from device import AdbError, InputSurface
from exceptions import NavigationUnreachable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tap:
    x: int
    y: int


@dataclass(frozen=True)
class Swipe:
    x1: int
    y1: int
    x2: int
    y2: int
    duration_ms: int = 300


@dataclass(frozen=True)
class Key:
    code: int


@dataclass(frozen=True)
class LongPress:
    x: int
    y: int
    duration_ms: int = LONG_PRESS_MS


Action = Union[Tap, Swipe, Key, LongPress]


def action_from_config(entry: Mapping[str, Any]) -> Action:
    """Build an action from a ``NAV_ACTIONS``-style mapping.

    Raises:
        ValueError: If the ``type`` key is missing or unknown.
    """
    kind = entry.get("type")
    if kind == "tap":
        return Tap(int(entry["x"]), int(entry["y"]))
    if kind == "swipe":
        return Swipe(
            int(entry["x1"]),
            int(entry["y1"]),
            int(entry["x2"]),
            int(entry["y2"]),
            int(entry.get("duration_ms", 300)),
        )
    if kind == "key":
        return Key(int(entry["code"]))
    if kind == "long_press":
        return LongPress(
            int(entry["x"]), int(entry["y"]), int(entry.get("duration_ms", LONG_PRESS_MS))
        )
    raise ValueError(f"Unknown navigation action type: {dict(entry)!r}")


def _offset(value: int, magnitude: int, rng: random.Random) -> int:
    if magnitude <= 0:
        return value
    return value + rng.randint(-magnitude, magnitude)


def humanize(
    action: Action,
    rng: random.Random,
    px: int = TAP_JITTER_PX,
    ms: int = DURATION_JITTER_MS,
) -> Action:
    """Return a randomized copy of *action*.

    Coordinates move by at most ``±px`` (never below zero) and durations by
    at most ``±ms`` (never below ``MIN_GESTURE_MS``). Key presses are
    returned unchanged. The input action is never modified.
    """
    if isinstance(action, Key):
        return action
    if isinstance(action, Tap):
        return Tap(max(0, _offset(action.x, px, rng)), max(0, _offset(action.y, px, rng)))
    if isinstance(action, LongPress):
        return LongPress(
            max(0, _offset(action.x, px, rng)),
            max(0, _offset(action.y, px, rng)),
            max(MIN_GESTURE_MS, _offset(action.duration_ms, ms, rng)),
        )
    if isinstance(action, Swipe):
        return Swipe(
            max(0, _offset(action.x1, px, rng)),
            max(0, _offset(action.y1, px, rng)),
            max(0, _offset(action.x2, px, rng)),
            max(0, _offset(action.y2, px, rng)),
            max(MIN_GESTURE_MS, _offset(action.duration_ms, ms, rng)),
        )
    raise TypeError(f"Not an action: {action!r}")


class Navigator:
    """Drive the game UI and track which screen it is on.

    Args:
        surface: Input backend receiving the humanized actions.
        capture: Returns a fresh frame of the emulator screen.
        detector: Identifies the screen shown in a frame.
        actions: Named action table (see ``config.NAV_ACTIONS``).
        seed: Humanization seed; a random one is drawn when omitted.
    """

    def __init__(
        self,
        surface: InputSurface,
        capture: Callable[[], np.ndarray],
        detector: Detector,
        actions: Mapping[str, Mapping[str, Any]] = NAV_ACTIONS,
        seed: Optional[int] = None,
        attempts: int = TRANSITION_ATTEMPTS,
        settle_delay: float = SETTLE_DELAY,
        settle_jitter: float = SETTLE_JITTER,
        recovery_wait: float = RECOVERY_WAIT,
        jitter_px: int = TAP_JITTER_PX,
        jitter_ms: int = DURATION_JITTER_MS,
        root_path: tuple[str, ...] = ROOT_PATH,
        dismiss_actions: tuple[str, ...] = DISMISS_ACTIONS,
    ) -> None:
        self.surface = surface
        self.capture = capture
        self.detector = detector
        self.actions = actions
        self.seed = seed if seed is not None else random.randrange(2**32)
        self.rng = random.Random(self.seed)
        self.attempts = attempts
        self.settle_delay = settle_delay
        self.settle_jitter = settle_jitter
        self.recovery_wait = recovery_wait
        self.jitter_px = jitter_px
        self.jitter_ms = jitter_ms
        self.root_path = root_path
        self.dismiss_actions = dismiss_actions
        self.state = Screen.UNKNOWN

    def action(self, name: str) -> Action:
        """Look up a named action from the calibration table."""
        try:
            entry = self.actions[name]
        except KeyError:
            raise ValueError(f"Unknown navigation action '{name}'") from None
        return action_from_config(entry)

    def perform(self, action: Action) -> Action:
        """Humanize *action* and send it to the surface.

        Returns:
            The action actually sent.
        """
        sent = humanize(action, self.rng, self.jitter_px, self.jitter_ms)
        logger.debug("perform %s (nominal %s)", sent, action)
        if isinstance(sent, Tap):
            self.surface.tap(sent.x, sent.y)
        elif isinstance(sent, Swipe):
            self.surface.swipe(sent.x1, sent.y1, sent.x2, sent.y2, sent.duration_ms)
        elif isinstance(sent, LongPress):
            self.surface.swipe(sent.x, sent.y, sent.x, sent.y, sent.duration_ms)
        else:
            self.surface.key(sent.code)
        return sent

    def run(self, name: str) -> Action:
        """Perform the named calibration action."""
        return self.perform(self.action(name))

    def settle(self, delay: Optional[float] = None) -> None:
        """Sleep for the settle interval plus a little random jitter."""
        base = self.settle_delay if delay is None else delay
        time.sleep(base + self.rng.uniform(0.0, self.settle_jitter))

    def verify(self, expected: Screen) -> bool:
        """Capture a frame and check whether it shows *expected*.

        The detected screen becomes the navigator's current state.
        """
        self.state = self.detector.identify(self.capture())
        return self.state == expected

    def transition(
        self,
        action: Action,
        expected: Screen,
        attempts: Optional[int] = None,
    ) -> bool:
        """Perform *action* until *expected* is verified or the budget runs out."""
        budget = attempts if attempts is not None else self.attempts
        for attempt in range(1, budget + 1):
            self.perform(action)
            self.settle()
            if self.verify(expected):
                return True
            logger.debug(
                "Expected %s, saw %s (attempt %d/%d)",
                expected.value, self.state.value, attempt, budget,
            )
        logger.warning(
            "Transition to %s failed after %d attempt(s)", expected.value, budget
        )
        return False

    def dismiss(self) -> None:
        """Issue the independent dismiss gestures (close button, then back)."""
        for name in self.dismiss_actions:
            self.run(name)
            self.settle()

    def replay_root_path(self) -> bool:
        """Walk the full path from the city view to the rankings list."""
        *steps, last = self.root_path
        for name in steps:
            self.run(name)
            self.settle()
        return self.transition(self.action(last), Screen.LIST_VIEW)

    def ensure_list_view(self) -> None:
        """Make sure the rankings list is on screen, recovering if needed.

        Recovery order: dismiss and re-verify; replay the root path; wait
        ``recovery_wait`` seconds, dismiss and re-verify.

        Raises:
            NavigationUnreachable: If every recovery step failed. The state
                is left at ``Screen.UNREACHABLE``.
        """
        if self.verify(Screen.LIST_VIEW):
            return

        logger.info("Not on list view (saw %s); dismissing", self.state.value)
        self.dismiss()
        if self.verify(Screen.LIST_VIEW):
            return

        logger.warning("Dismiss did not reach the list; replaying root path")
        if self.replay_root_path():
            return

        logger.warning(
            "Root path replay failed; waiting %.1fs before a final dismiss",
            self.recovery_wait,
        )
        time.sleep(self.recovery_wait)
        self.dismiss()
        if self.verify(Screen.LIST_VIEW):
            return

        self.state = Screen.UNREACHABLE
        raise NavigationUnreachable(
            Screen.LIST_VIEW.value,
            "dismiss, root path replay and delayed dismiss all failed",
        )

    def return_to_list(self) -> bool:
        """One clean attempt to get back to the list; never raises."""
        try:
            self.ensure_list_view()
        except (NavigationUnreachable, AdbError) as exc:
            logger.error("Return to list failed: %s", exc)
            return False
        return True
