"""
Database models
"""
from timeclock.models.employee import Employee
from timeclock.models.attendance_machine import AttendanceMachineEvent, AttendanceDeviceUserMapping
from timeclock.models.work_schedule import WorkSchedule
from timeclock.models.attendance import (
    AttendanceRecord,
    AttendanceEvent,
    AttendanceStatus,
    CheckInStatus,
    CheckOutStatus,
    AttendanceSource,
    AttendanceEventType,
)
from timeclock.models.system_state import SystemState

__all__ = [
    "Employee",
    "AttendanceMachineEvent",
    "AttendanceDeviceUserMapping",
    "WorkSchedule",
    "AttendanceRecord",
    "AttendanceEvent",
    "AttendanceStatus",
    "CheckInStatus",
    "CheckOutStatus",
    "AttendanceSource",
    "AttendanceEventType",
    "SystemState",
]
