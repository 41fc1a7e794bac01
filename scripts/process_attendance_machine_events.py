"""
Reconcile every time-clock punch past the watermark (scheduler / cron entry point).

Only one run may be active at a time: the watermark is a single global cursor.
Schedule this script from one place only and do not run it while the API
process endpoint is in use.

Usage:
  python scripts/process_attendance_machine_events.py
  python scripts/process_attendance_machine_events.py --batch-size 1000
"""
import argparse
import sys
from pathlib import Path

# Add project root so timeclock is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from sqlalchemy.orm import Session
from timeclock.core.logging import setup_logging
from timeclock.db import session as db_session
from timeclock.services import attendance_machine_service as engine


def main():
    parser = argparse.ArgumentParser(description="Process new attendance machine events")
    parser.add_argument("--batch-size", type=int, default=None, help="Events per batch (default: ATTENDANCE_BATCH_SIZE)")
    args = parser.parse_args()

    if args.batch_size is not None and args.batch_size <= 0:
        parser.error("--batch-size must be positive")

    setup_logging()
    db: Session = db_session.SessionLocal()
    try:
        result = engine.process_attendance_machine_events(db, batch_size=args.batch_size)
        print(
            f"Done: batches={result.batches} last_epoch={result.last_epoch} events={result.events} "
            f"groups={result.processed_groups} written={result.records_written} "
            f"skipped_no_mapping={result.skipped_no_mapping} skipped_adjusted={result.skipped_adjusted}"
        )
    finally:
        db.close()


if __name__ == "__main__":
    main()
