"""
Attendance record schemas (reconciliation output + manual adjustment input).
All datetimes are rendered in the organisation offset.
"""
from datetime import date, datetime
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from timeclock.models.attendance import AttendanceSource, AttendanceStatus, CheckInStatus, CheckOutStatus
from timeclock.utils.datetime_utils import iso_local


class AttendanceRecordOut(BaseModel):
    id: int
    employee_id: int
    work_date: date
    schedule_id: Optional[int] = None
    check_in_at: Optional[datetime] = None
    check_out_at: Optional[datetime] = None
    status: AttendanceStatus
    check_in_status: Optional[CheckInStatus] = None
    check_out_status: Optional[CheckOutStatus] = None
    planned_minutes: int
    work_minutes: int
    break_minutes: int
    late_minutes: int
    early_leave_minutes: int
    overtime_minutes: int
    forced_auto_checkout: bool
    source: AttendanceSource
    is_adjusted: bool
    adjusted_by: Optional[int] = None
    adjusted_at: Optional[datetime] = None
    adjust_note: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("check_in_at", "check_out_at", "adjusted_at")
    def _ser_datetime(self, dt: Optional[datetime]) -> Optional[str]:
        return iso_local(dt)


class AttendanceRecordListResponse(BaseModel):
    items: List[AttendanceRecordOut]
    total: int


class AttendanceAdjustRequest(BaseModel):
    """Manual correction written by the approval workflow; pins the record against reconciliation."""
    adjusted_by: int = Field(..., description="Employee id of the approver")
    note: Optional[str] = None
    check_in_at: Optional[datetime] = None
    check_out_at: Optional[datetime] = None
    status: Optional[AttendanceStatus] = None

    @model_validator(mode="after")
    def check_order(self) -> "AttendanceAdjustRequest":
        if self.check_in_at and self.check_out_at and self.check_out_at < self.check_in_at:
            raise ValueError("check_out_at must not be before check_in_at")
        return self
