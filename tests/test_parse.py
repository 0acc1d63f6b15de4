"""Tests for parse.py - OCR adapter, number parsing and record assembly."""

from unittest.mock import MagicMock, patch

import numpy as np
import pytest

from exceptions import BoundsInvalid, RecognitionWeak
from parse import (
    PlayerRecord,
    digits_only,
    is_weak_id,
    normalize_name,
    parse_number,
    parse_player_record,
    read_region,
    recognize,
)


# ---------------------------------------------------------------------------
# recognize / read_region
# ---------------------------------------------------------------------------

class TestRecognize:
    """Tests for the pytesseract adapter."""

    @patch("parse.pytesseract.image_to_string", return_value=" 12,345 \n")
    def test_single_line_mode_and_strip(self, mock_ocr: MagicMock) -> None:
        text = recognize(np.zeros((10, 10), np.uint8))
        assert text == "12,345"
        assert mock_ocr.call_args.kwargs["config"] == "--psm 7"

    @patch("parse.pytesseract.image_to_string", return_value="17")
    def test_whitelist_is_passed(self, mock_ocr: MagicMock) -> None:
        recognize(np.zeros((10, 10), np.uint8), whitelist="0123456789")
        assert "tessedit_char_whitelist=0123456789" in mock_ocr.call_args.kwargs["config"]


class TestReadRegion:
    """Tests for read_region()."""

    @patch("parse.pytesseract.image_to_string", return_value="42")
    def test_crops_and_recognizes(self, mock_ocr: MagicMock, frame: np.ndarray) -> None:
        assert read_region(frame, (10, 10, 50, 20), "level") == "42"
        image = mock_ocr.call_args[0][0]
        assert image.shape == (40, 100)

    @patch("parse.pytesseract.image_to_string")
    def test_out_of_bounds_never_reaches_ocr(
        self, mock_ocr: MagicMock, frame: np.ndarray
    ) -> None:
        with pytest.raises(BoundsInvalid):
            read_region(frame, (1270, 0, 20, 20), "edge")
        mock_ocr.assert_not_called()


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

class TestParseNumber:
    """Tests for parse_number()."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("12,345,678", 12345678),
            ("12 345 678", 12345678),
            ("Power: 12.345.678", 12345678),
            ("  907  ", 907),
            ("ID: 51234567 (copy)", 51234567),
        ],
    )
    def test_separators_are_ignored(self, raw: str, expected: int) -> None:
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw", ["", None, "---", "abc"])
    def test_no_digits_is_zero(self, raw) -> None:
        assert parse_number(raw) == 0


class TestDigitsAndNames:
    """Tests for digits_only(), normalize_name() and is_weak_id()."""

    def test_digits_only(self) -> None:
        assert digits_only("ID: 12-34 a5") == "12345"
        assert digits_only("") == ""

    def test_normalize_name_collapses_whitespace(self) -> None:
        assert normalize_name("  Lord \n  Fluffy\t ") == "Lord Fluffy"
        assert normalize_name(None) == ""

    @pytest.mark.parametrize(
        "raw, weak",
        [("1234", True), ("12345", False), ("12 3a4", True), ("ID 123456", False), ("", True)],
    )
    def test_is_weak_id(self, raw: str, weak: bool) -> None:
        assert is_weak_id(raw, 5) is weak


# ---------------------------------------------------------------------------
# parse_player_record
# ---------------------------------------------------------------------------

class TestParsePlayerRecord:
    """Tests for parse_player_record()."""

    def test_full_record(self) -> None:
        texts = {
            "id": "ID: 51234567",
            "name": " Lord  Fluffy ",
            "power": "45,123,456",
            "kp": "1,234,567,890",
            "dead": "345,678",
            "t1": "10", "t2": "20", "t3": "30", "t4": "4,000", "t5": "5,000",
        }
        record = parse_player_record(texts)
        assert record == PlayerRecord(
            player_id=51234567,
            name="Lord Fluffy",
            power=45123456,
            kill_points=1234567890,
            dead=345678,
            t1=10, t2=20, t3=30, t4=4000, t5=5000,
        )

    def test_field_aliases(self) -> None:
        """Alternate OCR keys map onto the record fields."""
        record = parse_player_record(
            {"player_id": "123456", "killpoints": "900", "deaths": "7"}
        )
        assert record.player_id == 123456
        assert record.kill_points == 900
        assert record.dead == 7

    def test_missing_metrics_are_zero(self) -> None:
        record = parse_player_record({"id": "123456"})
        assert record.power == 0
        assert record.t5 == 0
        assert record.name == ""

    @pytest.mark.parametrize("raw_id", ["", "1234", "ID ----"])
    def test_weak_id_raises(self, raw_id: str) -> None:
        with pytest.raises(RecognitionWeak) as info:
            parse_player_record({"id": raw_id, "power": "100"}, min_id_digits=5)
        assert info.value.field == "id"
        assert info.value.min_digits == 5

    def test_metrics_excludes_identity(self, make_record) -> None:
        metrics = make_record().metrics()
        assert "player_id" not in metrics
        assert "name" not in metrics
        assert set(metrics) == {
            "power", "kill_points", "dead", "t1", "t2", "t3", "t4", "t5",
        }
