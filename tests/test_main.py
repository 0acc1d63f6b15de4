"""Tests for main.py - argument parsing, wiring and subcommands."""

import argparse
import logging
from unittest.mock import MagicMock, patch

import pytest

from config import LIST_ROWS
from main import (
    HANDLER_NAMES,
    build_parser,
    build_surface,
    configure_logging,
    main,
    scan_indices,
)


def _run(argv: list[str], db) -> int:
    with patch("main.Database", return_value=db), patch("main.configure_logging"), \
            patch.object(db, "close"):
        with pytest.raises(SystemExit) as info:
            main(argv)
    return info.value.code


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestScanIndices:
    """Tests for scan_indices()."""

    def _args(self, *argv: str) -> argparse.Namespace:
        return build_parser().parse_args(["scan", *argv])

    def test_default_is_every_row(self) -> None:
        assert scan_indices(self._args()) == list(range(len(LIST_ROWS)))

    def test_explicit_rows(self) -> None:
        assert scan_indices(self._args("--rows", "3", "1")) == [3, 1]

    def test_start_and_count(self) -> None:
        assert scan_indices(self._args("--start", "2", "--count", "3")) == [2, 3, 4]

    def test_count_is_capped_at_last_row(self) -> None:
        assert scan_indices(self._args("--start", "5", "--count", "10")) == [5, 6]


class TestParser:
    """Tests for build_parser()."""

    def test_weight_kind_is_restricted(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["weight", "power", "1"])

    def test_top_default(self) -> None:
        assert build_parser().parse_args(["top"]).n == 10

    def test_subcommand_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_repeated_calls_do_not_duplicate_handlers(self, tmp_path) -> None:
        root = logging.getLogger()
        level = root.level
        try:
            with patch("main.LOG_DIR", tmp_path):
                configure_logging()
                configure_logging(verbose=True)
            owned = [h for h in root.handlers if h.get_name() in HANDLER_NAMES]
            assert sorted(h.get_name() for h in owned) == sorted(HANDLER_NAMES)
            assert list(tmp_path.glob("dkp_*.log"))
        finally:
            for handler in list(root.handlers):
                if handler.get_name() in HANDLER_NAMES:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)


class TestBuildSurface:
    """Tests for build_surface()."""

    def test_adb_backend_is_the_device(self) -> None:
        device = MagicMock()
        assert build_surface(device, "adb") is device

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown INPUT_BACKEND"):
            build_surface(MagicMock(), "vnc")


# ---------------------------------------------------------------------------
# Subcommands end to end
# ---------------------------------------------------------------------------

class TestMain:
    """Tests for main() against a SQLite database."""

    def test_period_lifecycle(self, db, ledger, capsys) -> None:
        assert _run(["period", "start", "KvK 9"], db) == 0
        period_id = ledger.active_period_id()
        assert period_id is not None

        assert _run(["weight", "dead", "8"], db) == 0
        assert ledger.weights().dead_weight == 8.0

        assert _run(["period", "end"], db) == 0
        assert ledger.active_period_id() is None
        assert f"Ended KvK period {period_id}" in capsys.readouterr().out

    def test_no_active_period_exits_1(self, db) -> None:
        assert _run(["weight", "kp", "2"], db) == 1
        assert _run(["goal", "ensure-all"], db) == 1

    def test_progress_and_top(self, db, ledger, make_record, capsys) -> None:
        ledger.start_period()
        ledger.record_scan(make_record(kill_points=500, dead=10))
        ledger.record_scan(make_record(kill_points=10500, dead=20))

        assert _run(["progress", "12345678"], db) == 0
        assert _run(["top", "5"], db) == 0

        out = capsys.readouterr().out
        assert "4.5%" in out
        assert "  1. " in out

    def test_unexpected_error_exits_1(self, db) -> None:
        failing = MagicMock(side_effect=RuntimeError("boom"))
        with patch.dict("main.COMMANDS", {"top": failing}):
            assert _run(["top"], db) == 1
        failing.assert_called_once()
