"""Export of the latest snapshots to CSV and Google Sheets.

Both exports write the same header and rows, newest scan first. Sheet
writes use ``value_input_option="USER_ENTERED"`` so numbers land as numbers
and timestamps as dates.
"""

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import gspread

from config import OUT_DIR, SERVICE_ACCOUNT_KEY_PATH, SHEET_LATEST_TAB, SPREADSHEET_ID
from ledger import Ledger
from models import LatestSnapshot

logger = logging.getLogger(__name__)

LATEST_HEADER: tuple[str, ...] = (
    "player_id", "name", "updated_at", "power", "kill_points", "dead",
    "t1", "t2", "t3", "t4", "t5",
)


def latest_table(ledger: Ledger, limit: int = 1000) -> list[list[Any]]:
    """Rows of the latest-snapshot export, header excluded."""
    return [_row(snapshot) for snapshot in ledger.latest_rows(limit=limit)]


def _row(snapshot: LatestSnapshot) -> list[Any]:
    row: list[Any] = []
    for column in LATEST_HEADER:
        value = getattr(snapshot, column)
        if isinstance(value, datetime):
            value = value.isoformat(sep=" ", timespec="seconds")
        row.append("" if value is None else value)
    return row


def export_latest_csv(ledger: Ledger, out_dir: Path = OUT_DIR) -> Path:
    """Write ``latest-YYYY-MM-DD-HH-MM-SS.csv`` into *out_dir*.

    Returns:
        Path of the written file.
    """
    out_dir.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d-%H-%M-%S")
    path = out_dir / f"latest-{stamp}.csv"
    rows = latest_table(ledger)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(LATEST_HEADER)
        writer.writerows(rows)
    logger.info("CSV saved: %s (%d rows)", path, len(rows))
    return path


def get_sheets_client() -> gspread.Client:
    """Authenticate with Google Sheets using the service account key.

    The key path is read from ``config.SERVICE_ACCOUNT_KEY_PATH``.

    Raises:
        FileNotFoundError: If the service account key file does not exist.
    """
    if not SERVICE_ACCOUNT_KEY_PATH.is_file():
        raise FileNotFoundError(
            f"Service account key not found at {SERVICE_ACCOUNT_KEY_PATH}"
        )
    return gspread.service_account(filename=str(SERVICE_ACCOUNT_KEY_PATH))


def export_latest_to_sheet(
    ledger: Ledger,
    client: gspread.Client,
    spreadsheet_id: str = SPREADSHEET_ID,
    tab: str = SHEET_LATEST_TAB,
) -> int:
    """Replace the contents of *tab* with the latest snapshots.

    Returns:
        Number of data rows written.

    Raises:
        ValueError: If *spreadsheet_id* is empty or *tab* does not exist.
            Tabs are never created here.
    """
    if not spreadsheet_id:
        raise ValueError("SPREADSHEET_ID is not configured")
    spreadsheet = client.open_by_key(spreadsheet_id)
    try:
        worksheet = spreadsheet.worksheet(tab)
    except gspread.exceptions.WorksheetNotFound:
        raise ValueError(f"Worksheet tab '{tab}' does not exist") from None

    rows = latest_table(ledger)
    worksheet.clear()
    worksheet.update(
        values=[list(LATEST_HEADER), *rows],
        range_name="A1",
        value_input_option="USER_ENTERED",
    )
    logger.info("Sheet tab '%s' updated (%d rows)", tab, len(rows))
    return len(rows)
