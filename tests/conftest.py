"""Shared test configuration and fixtures.

Screen-level tests run against blank frames with OCR replaced by a scripted
region reader; ledger tests run against a throwaway SQLite database.
"""

from collections.abc import Callable
from unittest.mock import MagicMock

import numpy as np
import pytest

from config import SCREEN_HEIGHT, SCREEN_WIDTH
from database import Database
from detect import Detector, Screen
from ledger import Ledger
from parse import PlayerRecord


@pytest.fixture
def frame() -> np.ndarray:
    """A blank BGR frame at the calibrated resolution."""
    return np.zeros((SCREEN_HEIGHT, SCREEN_WIDTH, 3), dtype=np.uint8)


@pytest.fixture
def db(tmp_path):
    """An initialized SQLite database, disposed after the test."""
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}", echo=False)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def ledger(db) -> Ledger:
    return Ledger(db)


@pytest.fixture
def make_record() -> Callable[..., PlayerRecord]:
    """Factory for ``PlayerRecord`` with overridable fields."""

    def factory(**overrides) -> PlayerRecord:
        values = {
            "player_id": 12345678,
            "name": "Governor",
            "power": 100000,
            "kill_points": 500,
            "dead": 10,
            "t1": 1,
            "t2": 2,
            "t3": 3,
            "t4": 4,
            "t5": 5,
        }
        values.update(overrides)
        return PlayerRecord(**values)

    return factory


class ScriptedReader:
    """Region reader returning canned text per label.

    A value may be a string (returned every time) or a list (consumed one
    item per call; the last item repeats). Unknown labels read as ``""``.
    """

    def __init__(self, texts: dict) -> None:
        self.texts = dict(texts)
        self.calls: list[str] = []

    def __call__(self, frame, rect, label="", whitelist=None) -> str:
        self.calls.append(label)
        value = self.texts.get(label, "")
        if isinstance(value, list):
            return value.pop(0) if len(value) > 1 else value[0]
        return value


@pytest.fixture
def scripted_reader() -> Callable[[dict], ScriptedReader]:
    return ScriptedReader


@pytest.fixture
def navigator_mock(frame) -> MagicMock:
    """A ``Navigator`` stand-in that starts on the list view."""
    navigator = MagicMock()
    navigator.state = Screen.LIST_VIEW
    navigator.seed = 7
    navigator.detector = Detector()
    navigator.capture.return_value = frame
    return navigator
