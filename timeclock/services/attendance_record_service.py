"""
Attendance record reads and the manual adjustment write.

An adjustment sets is_adjusted, after which the reconciliation engine leaves
the record (and its audit rows) alone for good.
"""
import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from timeclock.models.attendance import AttendanceRecord, AttendanceSource, AttendanceStatus
from timeclock.models.employee import Employee
from timeclock.utils.datetime_utils import ensure_utc, now_utc

logger = logging.getLogger(__name__)


def list_records(
    db: Session,
    from_date: date,
    to_date: date,
    employee_id: Optional[int] = None,
    status_filter: Optional[AttendanceStatus] = None,
) -> List[AttendanceRecord]:
    if from_date > to_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="from must be less than or equal to to",
        )
    query = db.query(AttendanceRecord).filter(
        AttendanceRecord.work_date >= from_date,
        AttendanceRecord.work_date <= to_date,
    )
    if employee_id is not None:
        query = query.filter(AttendanceRecord.employee_id == employee_id)
    if status_filter is not None:
        query = query.filter(AttendanceRecord.status == status_filter)
    return list(query.order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.employee_id.asc()).all())


def adjust_record(
    db: Session,
    record_id: int,
    adjusted_by: int,
    *,
    check_in_at: Optional[datetime] = None,
    check_out_at: Optional[datetime] = None,
    status_value: Optional[AttendanceStatus] = None,
    note: Optional[str] = None,
    now: Optional[datetime] = None,
) -> AttendanceRecord:
    """Apply a human correction and pin the record."""
    record = db.query(AttendanceRecord).filter(AttendanceRecord.id == record_id).first()
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attendance record not found")
    if not db.query(Employee).filter(Employee.id == adjusted_by).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown adjuster")

    if check_in_at is not None:
        record.check_in_at = ensure_utc(check_in_at)
    if check_out_at is not None:
        record.check_out_at = ensure_utc(check_out_at)
    if status_value is not None:
        record.status = status_value
    record.source = AttendanceSource.MANUAL
    record.is_adjusted = True
    record.adjusted_by = adjusted_by
    record.adjusted_at = ensure_utc(now) if now else now_utc()
    record.adjust_note = note
    db.commit()
    db.refresh(record)

    logger.info(
        "Attendance record %s adjusted by employee_id=%s (work_date=%s)",
        record.id, adjusted_by, record.work_date,
    )
    return record
