"""
Process-wide guard for reconciliation runs.

Every HTTP path that reconciles (process, reprocess, mapping save) holds this
lock for the duration of the run; a second caller gets 409 instead of
racing on the same attendance records.
"""
import logging
import threading
from contextlib import contextmanager

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)

run_lock = threading.Lock()


@contextmanager
def attendance_run(action: str):
    if not run_lock.acquire(blocking=False):
        logger.warning("Attendance %s refused: another run holds the lock", action)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Attendance processing is already running",
        )
    try:
        yield
    finally:
        run_lock.release()
