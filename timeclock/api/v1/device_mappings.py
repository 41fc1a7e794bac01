"""
Device user -> employee mapping endpoints
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from timeclock.core.deps import get_db
from timeclock.core.run_lock import attendance_run
from timeclock.models.attendance_machine import AttendanceDeviceUserMapping
from timeclock.schemas.device_mapping import (
    DeviceMappingUpsert,
    DeviceMappingOut,
    DeviceMappingListResponse,
    DeviceMappingDeleteResponse,
)
from timeclock.services import device_mapping_service as svc

router = APIRouter()


def _to_out(mapping: AttendanceDeviceUserMapping) -> DeviceMappingOut:
    return DeviceMappingOut(
        id=mapping.id,
        device_code=mapping.device_code,
        device_user_code=mapping.device_user_code,
        employee_id=mapping.employee_id,
        employee_code=mapping.employee.emp_code if mapping.employee else None,
        employee_name=mapping.employee.name if mapping.employee else None,
        is_active=mapping.is_active,
        note=mapping.note,
    )


@router.get("", response_model=DeviceMappingListResponse)
def list_device_mappings(
    device_code: str = Query(..., alias="deviceCode", min_length=1),
    db: Session = Depends(get_db),
):
    mappings = svc.list_mappings(db, device_code.strip())
    return DeviceMappingListResponse(items=[_to_out(m) for m in mappings])


@router.post("", response_model=DeviceMappingOut)
def upsert_device_mapping(body: DeviceMappingUpsert, db: Session = Depends(get_db)):
    """Create or update a mapping; the pair's last two days are reprocessed under the run lock."""
    with attendance_run("mapping save"):
        mapping = svc.upsert_mapping(
            db,
            device_code=body.device_code,
            device_user_code=body.device_user_code,
            employee_id=body.employee_id,
            note=body.note,
            is_active=body.is_active,
        )
    return _to_out(mapping)


@router.delete("", response_model=DeviceMappingDeleteResponse)
def delete_device_mapping(
    device_code: str = Query(..., alias="deviceCode", min_length=1),
    device_user_code: str = Query(..., alias="deviceUserCode", min_length=1),
    db: Session = Depends(get_db),
):
    deleted = svc.delete_mapping(db, device_code.strip(), device_user_code.strip())
    return DeviceMappingDeleteResponse(deleted=deleted)
