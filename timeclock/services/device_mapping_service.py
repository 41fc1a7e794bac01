"""
Device user -> employee mapping CRUD.

Upserting a mapping reprocesses the pair's recent punches so days punched
before the mapping existed get their records.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, joinedload

from timeclock.core.constants import MAPPING_REPROCESS_DAYS
from timeclock.models.attendance_machine import AttendanceDeviceUserMapping
from timeclock.models.employee import Employee
from timeclock.services.attendance_machine_service import reprocess_events_for_pairs
from timeclock.utils.datetime_utils import now_utc

logger = logging.getLogger(__name__)


def list_mappings(db: Session, device_code: str) -> List[AttendanceDeviceUserMapping]:
    return (
        db.query(AttendanceDeviceUserMapping)
        .options(joinedload(AttendanceDeviceUserMapping.employee))
        .filter(AttendanceDeviceUserMapping.device_code == device_code)
        .order_by(AttendanceDeviceUserMapping.device_user_code.asc())
        .all()
    )


def upsert_mapping(
    db: Session,
    device_code: str,
    device_user_code: str,
    employee_id: int,
    note: Optional[str] = None,
    is_active: Optional[bool] = None,
    now: Optional[datetime] = None,
) -> AttendanceDeviceUserMapping:
    """Create or update the mapping for a device user, then reprocess its last days."""
    employee = db.query(Employee).filter(Employee.id == employee_id).first()
    if not employee:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Employee not found")

    mapping = (
        db.query(AttendanceDeviceUserMapping)
        .filter(
            AttendanceDeviceUserMapping.device_code == device_code,
            AttendanceDeviceUserMapping.device_user_code == device_user_code,
        )
        .first()
    )
    if mapping is None:
        mapping = AttendanceDeviceUserMapping(device_code=device_code, device_user_code=device_user_code)
        db.add(mapping)
    mapping.employee_id = employee_id
    mapping.note = note
    mapping.is_active = True if is_active is None else is_active
    db.commit()
    db.refresh(mapping)
    logger.info(
        "Device mapping saved: %s/%s -> employee_id=%s active=%s",
        device_code, device_user_code, employee_id, mapping.is_active,
    )

    now = now or now_utc()
    reprocess_events_for_pairs(
        db,
        pairs=[(device_code, device_user_code)],
        from_at=now - timedelta(days=MAPPING_REPROCESS_DAYS),
        to_at=now,
        now=now,
    )
    return mapping


def delete_mapping(db: Session, device_code: str, device_user_code: str) -> int:
    deleted = (
        db.query(AttendanceDeviceUserMapping)
        .filter(
            AttendanceDeviceUserMapping.device_code == device_code,
            AttendanceDeviceUserMapping.device_user_code == device_user_code,
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
