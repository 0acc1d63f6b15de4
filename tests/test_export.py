"""Tests for export.py - CSV and Google Sheets export of latest snapshots."""

import csv
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import gspread
import pytest

from export import (
    LATEST_HEADER,
    export_latest_csv,
    export_latest_to_sheet,
    get_sheets_client,
    latest_table,
)


@pytest.fixture
def seeded_ledger(ledger, make_record):
    stamps = [
        datetime(2026, 3, 1, 12, 0, 5, 250000, tzinfo=timezone.utc),
        datetime(2026, 3, 1, 12, 1, 0, tzinfo=timezone.utc),
    ]
    with patch("ledger.utc_now", side_effect=stamps):
        ledger.record_scan(make_record(player_id=11111111, name="Alpha", power=5000))
        ledger.record_scan(make_record(player_id=22222222, name="Bravo", power=7000))
    return ledger


# ---------------------------------------------------------------------------
# Table rendering
# ---------------------------------------------------------------------------

class TestLatestTable:
    """Tests for latest_table()."""

    def test_rows_follow_header_newest_first(self, seeded_ledger) -> None:
        rows = latest_table(seeded_ledger)

        assert [row[0] for row in rows] == [22222222, 11111111]
        assert len(rows[0]) == len(LATEST_HEADER)
        assert rows[0][1] == "Bravo"
        assert rows[0][3] == 7000

    def test_timestamp_is_rendered_to_seconds(self, seeded_ledger) -> None:
        updated_at = latest_table(seeded_ledger)[1][2]
        assert updated_at.startswith("2026-03-01 12:00:05")
        assert "." not in updated_at

    def test_empty_ledger(self, ledger) -> None:
        assert latest_table(ledger) == []


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

class TestExportCsv:
    """Tests for export_latest_csv()."""

    def test_writes_header_and_rows(self, seeded_ledger, tmp_path) -> None:
        out_dir = tmp_path / "out"

        path = export_latest_csv(seeded_ledger, out_dir)

        assert path.parent == out_dir
        assert path.name.startswith("latest-")
        assert path.suffix == ".csv"
        with path.open(newline="", encoding="utf-8") as handle:
            rows = list(csv.reader(handle))
        assert rows[0] == list(LATEST_HEADER)
        assert [row[0] for row in rows[1:]] == ["22222222", "11111111"]


# ---------------------------------------------------------------------------
# Google Sheets
# ---------------------------------------------------------------------------

class TestExportSheet:
    """Tests for export_latest_to_sheet() with a mocked gspread client."""

    def test_replaces_tab_contents(self, seeded_ledger) -> None:
        client = MagicMock()
        worksheet = client.open_by_key.return_value.worksheet.return_value

        written = export_latest_to_sheet(seeded_ledger, client, "sheet-id", "Latest")

        assert written == 2
        client.open_by_key.assert_called_once_with("sheet-id")
        client.open_by_key.return_value.worksheet.assert_called_once_with("Latest")
        worksheet.clear.assert_called_once()
        kwargs = worksheet.update.call_args.kwargs
        assert kwargs["range_name"] == "A1"
        assert kwargs["value_input_option"] == "USER_ENTERED"
        assert kwargs["values"][0] == list(LATEST_HEADER)
        assert len(kwargs["values"]) == 3

    def test_missing_tab_is_not_created(self, seeded_ledger) -> None:
        client = MagicMock()
        spreadsheet = client.open_by_key.return_value
        spreadsheet.worksheet.side_effect = gspread.exceptions.WorksheetNotFound("Latest")

        with pytest.raises(ValueError, match="'Latest' does not exist"):
            export_latest_to_sheet(seeded_ledger, client, "sheet-id", "Latest")

        spreadsheet.add_worksheet.assert_not_called()

    def test_requires_spreadsheet_id(self, seeded_ledger) -> None:
        client = MagicMock()
        with pytest.raises(ValueError, match="SPREADSHEET_ID"):
            export_latest_to_sheet(seeded_ledger, client, "", "Latest")
        client.open_by_key.assert_not_called()


class TestGetSheetsClient:
    """Tests for get_sheets_client()."""

    def test_missing_key_file(self, tmp_path) -> None:
        with patch("export.SERVICE_ACCOUNT_KEY_PATH", tmp_path / "missing.json"):
            with pytest.raises(FileNotFoundError, match="Service account key not found"):
                get_sheets_client()

    @patch("export.gspread.service_account")
    def test_authenticates_with_key(self, mock_service_account: MagicMock, tmp_path) -> None:
        key = tmp_path / "key.json"
        key.write_text("{}")
        with patch("export.SERVICE_ACCOUNT_KEY_PATH", key):
            client = get_sheets_client()
        mock_service_account.assert_called_once_with(filename=str(key))
        assert client is mock_service_account.return_value
