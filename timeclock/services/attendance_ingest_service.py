"""
Device punch ingestion: append raw punches to the punch log and assign epochs.

Each accepted punch gets the next epoch (max(epoch) + 1, in payload order).
Re-sending a punch with the same dedupe key is a no-op; stored rows are never
updated. Ingestion does not reconcile; the batch loop picks new epochs up.
"""
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from timeclock.core.constants import INGEST_CHUNK_SIZE
from timeclock.models.attendance_machine import AttendanceMachineEvent
from timeclock.schemas.attendance_machine import IncomingLog
from timeclock.utils.datetime_utils import UTC
from timeclock.utils.json_serializer import sanitize_for_json

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    skipped: int = 0


def make_dedupe_key(
    device_code: str,
    user_code: str,
    epoch_ms: int,
    verify_type: Optional[str] = None,
    in_out: Optional[str] = None,
) -> str:
    return "|".join([device_code, user_code, str(epoch_ms), verify_type or "", in_out or ""])


def _parse_epoch_ms(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number)


def _normalize_log(log: IncomingLog, root_device_code: str, machine_id: Optional[int]) -> Optional[dict]:
    device_code = str(log.device_code or root_device_code).strip()
    user_code = str(log.user_code if log.user_code is not None else "").strip()
    epoch_ms = _parse_epoch_ms(log.epoch_ms)
    if not device_code or not user_code or epoch_ms is None:
        return None
    try:
        occurred_at = datetime.fromtimestamp(epoch_ms / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None

    return {
        "device_code": device_code,
        "device_user_code": user_code,
        "epoch_ms": epoch_ms,
        "occurred_at": occurred_at,
        "machine_id": machine_id,
        "device_ip": log.device_ip,
        "user_sn": log.user_sn,
        "verify_type": log.verify_type,
        "in_out": log.in_out,
        "raw": sanitize_for_json(log.raw),
        "dedupe_key": make_dedupe_key(device_code, user_code, epoch_ms, log.verify_type, log.in_out),
    }


def _next_epoch(db: Session) -> int:
    current = db.query(func.max(AttendanceMachineEvent.epoch)).scalar()
    return int(current or 0) + 1


def ingest_device_logs(
    db: Session,
    device_code: str,
    logs: Sequence[IncomingLog],
    machine_id: Optional[int] = None,
) -> IngestResult:
    """
    Append a device's punch logs.

    Invalid entries (missing user code, non-numeric epochMs) are counted as
    skipped. Rows whose dedupe key already exists, in the store or earlier in
    the same payload, count as duplicates.
    """
    result = IngestResult(received=len(logs))
    rows: List[dict] = []
    seen = set()
    for log in logs:
        row = _normalize_log(log, device_code, machine_id)
        if row is None:
            result.skipped += 1
            continue
        if row["dedupe_key"] in seen:
            result.duplicates += 1
            continue
        seen.add(row["dedupe_key"])
        rows.append(row)

    for i in range(0, len(rows), INGEST_CHUNK_SIZE):
        chunk = rows[i:i + INGEST_CHUNK_SIZE]
        keys = [row["dedupe_key"] for row in chunk]
        existing = {
            key for (key,) in db.query(AttendanceMachineEvent.dedupe_key)
            .filter(AttendanceMachineEvent.dedupe_key.in_(keys))
            .all()
        }
        try:
            epoch = _next_epoch(db)
            for row in chunk:
                if row["dedupe_key"] in existing:
                    result.duplicates += 1
                    continue
                db.add(AttendanceMachineEvent(epoch=epoch, **row))
                epoch += 1
                result.inserted += 1
            db.commit()
        except Exception:
            db.rollback()
            logger.error("Failed to ingest punch chunk for device %s", device_code, exc_info=True)
            raise

    logger.info(
        "Ingested device logs: device=%s received=%s inserted=%s duplicates=%s skipped=%s",
        device_code, result.received, result.inserted, result.duplicates, result.skipped,
    )
    return result
