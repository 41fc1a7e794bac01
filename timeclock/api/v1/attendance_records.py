"""
Attendance record endpoints: list reconciled days, manual adjustment.
"""
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from timeclock.core.deps import get_db
from timeclock.models.attendance import AttendanceStatus
from timeclock.schemas.attendance_record import (
    AttendanceRecordOut,
    AttendanceRecordListResponse,
    AttendanceAdjustRequest,
)
from timeclock.services import attendance_record_service as svc

router = APIRouter()


@router.get("", response_model=AttendanceRecordListResponse)
def list_attendance_records(
    from_date: date = Query(..., alias="from"),
    to_date: date = Query(..., alias="to"),
    employee_id: Optional[int] = Query(None),
    status: Optional[AttendanceStatus] = Query(None),
    db: Session = Depends(get_db),
):
    records = svc.list_records(db, from_date, to_date, employee_id=employee_id, status_filter=status)
    items = [AttendanceRecordOut.model_validate(r) for r in records]
    return AttendanceRecordListResponse(items=items, total=len(items))


@router.patch("/{record_id}/adjust", response_model=AttendanceRecordOut)
def adjust_attendance_record(
    record_id: int,
    body: AttendanceAdjustRequest,
    db: Session = Depends(get_db),
):
    """Manual correction. The record is pinned: reconciliation will not overwrite it again."""
    record = svc.adjust_record(
        db,
        record_id,
        body.adjusted_by,
        check_in_at=body.check_in_at,
        check_out_at=body.check_out_at,
        status_value=body.status,
        note=body.note,
    )
    return AttendanceRecordOut.model_validate(record)
