"""
Main API router
"""
from fastapi import APIRouter

from timeclock.api.v1 import (
    health,
    version,
    system_attendance,
    device_mappings,
    attendance_records,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(version.router, tags=["version"])
api_router.include_router(system_attendance.router, prefix="/system/attendance", tags=["system-attendance"])
api_router.include_router(device_mappings.router, prefix="/device-mappings", tags=["device-mappings"])
api_router.include_router(attendance_records.router, prefix="/attendance-records", tags=["attendance-records"])
