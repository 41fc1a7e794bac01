"""
Attendance record (one per employee per work day) and its audit events.
"""
from sqlalchemy import (
    Column,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    String,
    Text,
    JSON,
    Boolean,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from timeclock.db.base import Base


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    EARLY_LEAVE = "EARLY_LEAVE"
    LATE_AND_EARLY = "LATE_AND_EARLY"
    OVERTIME = "OVERTIME"
    NON_COMPLIANT = "NON_COMPLIANT"  # auto-closed: employee never punched out
    INCOMPLETE = "INCOMPLETE"
    ABSENT = "ABSENT"
    NO_SHIFT = "NO_SHIFT"


class CheckInStatus(str, enum.Enum):
    ON_TIME = "ON_TIME"
    LATE = "LATE"
    MISSED = "MISSED"
    PENDING = "PENDING"


class CheckOutStatus(str, enum.Enum):
    ON_TIME = "ON_TIME"
    EARLY = "EARLY"
    OVERTIME = "OVERTIME"
    MISSED = "MISSED"
    PENDING = "PENDING"


class AttendanceSource(str, enum.Enum):
    DEVICE = "DEVICE"
    MANUAL = "MANUAL"
    WEB = "WEB"


class AttendanceEventType(str, enum.Enum):
    CHECK_IN = "CHECK_IN"
    CHECK_OUT = "CHECK_OUT"


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False, index=True)
    schedule_id = Column(Integer, ForeignKey("work_schedules.id"), nullable=True)
    check_in_at = Column(DateTime(timezone=True), nullable=True)
    check_out_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(SQLEnum(AttendanceStatus), nullable=False, default=AttendanceStatus.INCOMPLETE)
    check_in_status = Column(SQLEnum(CheckInStatus), nullable=True)
    check_out_status = Column(SQLEnum(CheckOutStatus), nullable=True)
    planned_minutes = Column(Integer, nullable=False, default=0)
    work_minutes = Column(Integer, nullable=False, default=0)
    break_minutes = Column(Integer, nullable=False, default=0)
    late_minutes = Column(Integer, nullable=False, default=0)
    early_leave_minutes = Column(Integer, nullable=False, default=0)
    overtime_minutes = Column(Integer, nullable=False, default=0)
    forced_auto_checkout = Column(Boolean, nullable=False, default=False)
    source = Column(SQLEnum(AttendanceSource), nullable=False, default=AttendanceSource.DEVICE)
    # Manual correction; once set the reconciliation engine never touches the row again
    is_adjusted = Column(Boolean, nullable=False, default=False)
    adjusted_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    adjusted_at = Column(DateTime(timezone=True), nullable=True)
    adjust_note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_record_employee_date"),
    )

    employee = relationship("Employee", foreign_keys=[employee_id], backref="attendance_records")
    schedule = relationship("WorkSchedule")
    events = relationship("AttendanceEvent", back_populates="record", order_by="AttendanceEvent.occurred_at")


class AttendanceEvent(Base):
    """Which punch produced a record's check-in / check-out."""
    __tablename__ = "attendance_events"

    id = Column(Integer, primary_key=True, index=True)
    record_id = Column(Integer, ForeignKey("attendance_records.id"), nullable=False, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False)
    event_type = Column(SQLEnum(AttendanceEventType), nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    source = Column(SQLEnum(AttendanceSource), nullable=False, default=AttendanceSource.DEVICE)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", "event_type", name="uq_attendance_event_employee_date_type"),
    )

    record = relationship("AttendanceRecord", back_populates="events")
