"""Entry point for the KvK DKP tracker.

Subcommands::

    scan [--rows N ...] [--start N --count M] [--seed S]
    period start [NAME] | end | active
    weight {kp,dead} VALUE
    goal ensure PLAYER_ID | goal ensure-all
    progress PLAYER_ID
    top [N]
    latest [--search TEXT] [--limit N]
    export {csv,sheet}

Services (database, device, navigator, ledger) are built once per process
and passed by reference; the database is disposed on exit. Fatal errors are
logged with a traceback and exit with code 1; scan failures additionally
save a debug screenshot.
"""

import argparse
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from capture import capture_screen, save_debug_screenshot
from clipboard import FieldCapture
from config import (
    ADB_BIN,
    ADB_SERIAL,
    INPUT_BACKEND,
    LIST_ROWS,
    LOG_DIR,
    TOP_LIMIT_DEFAULT,
)
from database import Database
from detect import Detector
from device import AdbDevice, DeviceClipboard, HostClipboard, InputSurface, WindowSurface
from exceptions import BoundsInvalid, NoActivePeriod
from export import export_latest_csv, export_latest_to_sheet, get_sheets_client
from ledger import Ledger, ProgressRecord
from navigate import Navigator
from rows import RowSelector
from scan import ScanOrchestrator, ScanWorker

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
# Handlers owned by configure_logging; replaced on every call.
HANDLER_NAMES = ("dkp-console", "dkp-file")


def configure_logging(verbose: bool = False) -> None:
    """Log to the console and to ``LOG_DIR/dkp_YYYY-MM-DD.log``."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logfile = LOG_DIR / f"dkp_{datetime.now(timezone.utc):%Y-%m-%d}.log"

    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    file_handler = logging.FileHandler(logfile, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        if handler.get_name() in HANDLER_NAMES:
            root.removeHandler(handler)
            handler.close()
    for name, handler in zip(HANDLER_NAMES, (console, file_handler)):
        handler.set_name(name)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)


def build_surface(device: AdbDevice, backend: str = INPUT_BACKEND) -> InputSurface:
    """Input backend named by ``INPUT_BACKEND``.

    Raises:
        ValueError: If *backend* is unknown.
    """
    if backend == "adb":
        return device
    if backend == "window":
        return WindowSurface()
    raise ValueError(f"Unknown INPUT_BACKEND '{backend}' (use 'adb' or 'window')")


def build_worker(device: AdbDevice, ledger: Ledger, seed: Optional[int] = None) -> ScanWorker:
    """Wire the scan stack around one device and one ledger."""
    navigator = Navigator(
        build_surface(device),
        lambda: capture_screen(device),
        Detector(),
        seed=seed,
    )
    field_capture = FieldCapture(navigator, DeviceClipboard(device), HostClipboard())
    orchestrator = ScanOrchestrator(
        navigator, RowSelector(navigator), field_capture, ledger
    )
    logger.info("Scan worker ready (humanization seed %d)", navigator.seed)
    return ScanWorker(orchestrator, device)


def scan_indices(args: argparse.Namespace) -> list[int]:
    """Row indices requested on the command line (default: every row)."""
    if args.rows:
        return list(args.rows)
    start = args.start or 0
    count = args.count if args.count is not None else len(LIST_ROWS) - start
    return list(range(start, min(start + count, len(LIST_ROWS))))


def _format_progress(record: ProgressRecord) -> str:
    return (
        f"{record.player_id:>12} {record.name or '':<20} {record.percent:>6.1f}%  "
        f"dkp {record.dkp}/{record.target_dkp}  "
        f"(+kp {record.delta_kill_points}, +dead {record.delta_dead})"
    )


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_scan(args: argparse.Namespace, ledger: Ledger) -> int:
    device = AdbDevice(ADB_BIN, ADB_SERIAL)
    worker = build_worker(device, ledger, args.seed)
    try:
        summary = worker.run(scan_indices(args))
    except BoundsInvalid:
        logger.exception("Calibration does not fit the captured screen")
        save_debug_screenshot("bounds_invalid", device)
        return 1
    for outcome in summary.outcomes:
        if outcome.ok and outcome.report is not None and outcome.report.progress is not None:
            print(_format_progress(outcome.report.progress))
    print(f"Scanned {summary.scanned}, failed {summary.failed}")
    return 1 if summary.aborted else 0


def cmd_period(args: argparse.Namespace, ledger: Ledger) -> int:
    if args.action == "start":
        print(f"Started KvK period {ledger.start_period(args.name)}")
    elif args.action == "end":
        print(f"Ended KvK period {ledger.end_period()}")
    else:
        period_id = ledger.active_period_id()
        if period_id is None:
            print("No active KvK period")
        else:
            weights = ledger.weights(period_id)
            print(
                f"Active KvK period {period_id}: "
                f"kp_weight={weights.kp_weight} dead_weight={weights.dead_weight}"
            )
    return 0


def cmd_weight(args: argparse.Namespace, ledger: Ledger) -> int:
    period_id = ledger.set_weight(args.kind, args.value)
    print(f"Set weight {args.kind}={args.value} for KvK period {period_id}")
    return 0


def cmd_goal(args: argparse.Namespace, ledger: Ledger) -> int:
    if args.action == "ensure-all":
        made, skipped = ledger.ensure_all_goals()
        print(f"Goals created: {made}, skipped: {skipped}")
        return 0
    goal = ledger.ensure_goal(args.player_id)
    if goal is None:
        print("Already had a goal, no active KvK period, or player never scanned")
    else:
        print(
            f"Goal for {goal.player_id}: kp={goal.target_kill_points} "
            f"dead={goal.target_dead} dkp={goal.target_dkp}"
        )
    return 0


def cmd_progress(args: argparse.Namespace, ledger: Ledger) -> int:
    record = ledger.progress(args.player_id)
    print(_format_progress(record) if record else "No progress / no goal yet")
    return 0


def cmd_top(args: argparse.Namespace, ledger: Ledger) -> int:
    for rank, record in enumerate(ledger.top(args.n), start=1):
        print(f"{rank:>3}. {_format_progress(record)}")
    return 0


def cmd_latest(args: argparse.Namespace, ledger: Ledger) -> int:
    for row in ledger.latest_rows(args.limit, args.search):
        print(
            f"{row.player_id:>12} {row.name or '':<20} power {row.power:>12,} "
            f"kp {row.kill_points:>14,} dead {row.dead:>10,}  {row.updated_at}"
        )
    return 0


def cmd_export(args: argparse.Namespace, ledger: Ledger) -> int:
    if args.target == "csv":
        print(f"CSV saved: {export_latest_csv(ledger)}")
    else:
        rows = export_latest_to_sheet(ledger, get_sheets_client())
        print(f"Sheet updated: {rows} rows")
    return 0


COMMANDS = {
    "scan": cmd_scan,
    "period": cmd_period,
    "weight": cmd_weight,
    "goal": cmd_goal,
    "progress": cmd_progress,
    "top": cmd_top,
    "latest": cmd_latest,
    "export": cmd_export,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="KvK DKP tracker for Rise of Kingdoms.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug console output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan player profiles from the rankings list")
    scan.add_argument("--rows", type=int, nargs="+", help="Row indices to scan")
    scan.add_argument("--start", type=int, help="First row index")
    scan.add_argument("--count", type=int, help="Number of rows from --start")
    scan.add_argument("--seed", type=int, help="Humanization seed (default: random)")

    period = subparsers.add_parser("period", help="Manage KvK periods")
    period_actions = period.add_subparsers(dest="action", required=True)
    start = period_actions.add_parser("start", help="Start a new period")
    start.add_argument("name", nargs="?", help="Period name (default: 'KvK YYYY-MM-DD')")
    period_actions.add_parser("end", help="End the active period")
    period_actions.add_parser("active", help="Show the active period")

    weight = subparsers.add_parser("weight", help="Set a DKP weight on the active period")
    weight.add_argument("kind", choices=["kp", "dead"])
    weight.add_argument("value", type=float)

    goal = subparsers.add_parser("goal", help="Create KvK goals")
    goal_actions = goal.add_subparsers(dest="action", required=True)
    ensure = goal_actions.add_parser("ensure", help="Create one player's goal if missing")
    ensure.add_argument("player_id", type=int)
    goal_actions.add_parser("ensure-all", help="Create goals for every scanned player")

    progress = subparsers.add_parser("progress", help="Show a player's DKP progress")
    progress.add_argument("player_id", type=int)

    top = subparsers.add_parser("top", help="Rank players by percent of goal")
    top.add_argument("n", type=int, nargs="?", default=TOP_LIMIT_DEFAULT)

    latest = subparsers.add_parser("latest", help="List latest snapshots")
    latest.add_argument("--search", help="Filter by name or ID")
    latest.add_argument("--limit", type=int, default=200)

    export = subparsers.add_parser("export", help="Export latest snapshots")
    export.add_argument("target", choices=["csv", "sheet"])
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    """Parse arguments, run one subcommand, and exit with its status.

    Raises:
        SystemExit: Always, with 0 on success and 1 on any failure.
    """
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    db = Database()
    status = 1
    try:
        db.initialize()
        status = COMMANDS[args.command](args, Ledger(db))
    except (NoActivePeriod, ValueError) as exc:
        logger.error("%s", exc)
    except Exception:
        logger.exception("Fatal error in '%s'", args.command)
    finally:
        db.close()
    sys.exit(status)


if __name__ == "__main__":
    main()
