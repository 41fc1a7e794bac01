"""
Backfill: re-run reconciliation for a local date range and/or specific device users.
The watermark is not read or written.

Usage:
  python scripts/reprocess_attendance_machine_range.py --days 7
  python scripts/reprocess_attendance_machine_range.py --from 2026-03-01 --to 2026-03-31
  python scripts/reprocess_attendance_machine_range.py --from 2026-03-01 --to 2026-03-02 --pair DEV-01:100 --pair DEV-01:101
"""
import argparse
import sys
from datetime import date, datetime, timedelta
from pathlib import Path

# Add project root so timeclock is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.orm import Session
from timeclock.core.logging import setup_logging
from timeclock.db import session as db_session
from timeclock.services import attendance_machine_service as engine
from timeclock.utils.datetime_utils import combine_date_time, get_work_date, now_utc


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD")


def _parse_pair(value: str):
    device_code, sep, user_code = value.partition(":")
    if not sep or not device_code.strip() or not user_code.strip():
        raise argparse.ArgumentTypeError(f"Invalid pair {value!r}, expected DEVICE:USER")
    return device_code.strip(), user_code.strip()


def main():
    parser = argparse.ArgumentParser(description="Reprocess attendance machine events for a range")
    parser.add_argument("--from", dest="from_day", type=_parse_day, help="First local day (YYYY-MM-DD)")
    parser.add_argument("--to", dest="to_day", type=_parse_day, help="Last local day (YYYY-MM-DD), inclusive")
    parser.add_argument("--days", type=int, help="Shortcut: the last N local days up to today")
    parser.add_argument("--pair", action="append", type=_parse_pair, default=[], help="DEVICE:USER, repeatable")
    args = parser.parse_args()

    from_day, to_day = args.from_day, args.to_day
    if args.days is not None:
        if args.days <= 0:
            parser.error("--days must be positive")
        to_day = get_work_date(now_utc())
        from_day = to_day - timedelta(days=args.days - 1)
    if from_day and to_day and from_day > to_day:
        parser.error("--from must not be after --to")
    if not (from_day or to_day or args.pair):
        parser.error("give --from/--to, --days or at least one --pair")

    from_at = combine_date_time(from_day, "00:00") if from_day else None
    # Exclusive local midnight after the last day, minus a microsecond for the inclusive bound
    to_at = combine_date_time(to_day + timedelta(days=1), "00:00") - timedelta(microseconds=1) if to_day else None

    setup_logging()
    db: Session = db_session.SessionLocal()
    try:
        result = engine.reprocess_events_for_pairs(db, pairs=args.pair or None, from_at=from_at, to_at=to_at)
        print(
            f"Done: events={result.events} groups={result.processed} written={result.records_written} "
            f"skipped_no_mapping={result.skipped_no_mapping} skipped_adjusted={result.skipped_adjusted}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
