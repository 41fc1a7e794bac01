"""
System endpoints for time-clock devices and the reconciliation engine.

- POST /import: device bridge pushes raw punches.
- POST /process: drain punches past the watermark.
- POST /reprocess: backfill an explicit pair set / time range.
- GET /raw-events: browse the punch log with the mapped employee.

Engine runs are serialised by a process-wide run lock; a second call while
one is running gets 409. Multi-process deployments must schedule a single
runner (the engine itself does not detect concurrent runs).
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, joinedload

from timeclock.core.constants import RAW_EVENTS_DEFAULT_TAKE, RAW_EVENTS_MAX_TAKE
from timeclock.core.deps import get_db, require_system_api_key
from timeclock.core.run_lock import attendance_run
from timeclock.models.attendance_machine import AttendanceDeviceUserMapping, AttendanceMachineEvent
from timeclock.schemas.attendance_machine import (
    IngestRequest,
    IngestResponse,
    ProcessRequest,
    ProcessResponse,
    ReprocessRequest,
    ReprocessResponse,
    RawEventEmployee,
    RawEventOut,
    RawEventListResponse,
)
from timeclock.services import attendance_machine_service as engine
from timeclock.services.attendance_ingest_service import ingest_device_logs
from timeclock.utils.datetime_utils import ensure_utc

router = APIRouter(dependencies=[Depends(require_system_api_key)])


@router.post("/import", response_model=IngestResponse)
def import_device_logs(body: IngestRequest, db: Session = Depends(get_db)):
    """Append raw punches from a device. Invalid logs are skipped, re-sent logs ignored."""
    result = ingest_device_logs(db, body.device_code, body.logs, machine_id=body.machine_id)
    return IngestResponse(
        received=result.received,
        inserted=result.inserted,
        duplicates=result.duplicates,
        skipped=result.skipped,
    )


@router.post("/process", response_model=ProcessResponse)
def process_new_events(body: Optional[ProcessRequest] = None, db: Session = Depends(get_db)):
    """Reconcile every punch past the watermark."""
    payload = body or ProcessRequest()
    with attendance_run("process"):
        result = engine.process_attendance_machine_events(db, batch_size=payload.clamped_batch_size())
    return ProcessResponse(
        batches=result.batches,
        last_epoch=result.last_epoch,
        events=result.events,
        processed_groups=result.processed_groups,
        records_written=result.records_written,
        skipped_no_mapping=result.skipped_no_mapping,
        skipped_adjusted=result.skipped_adjusted,
    )


@router.post("/reprocess", response_model=ReprocessResponse)
def reprocess_range(body: ReprocessRequest, db: Session = Depends(get_db)):
    """Backfill: reconcile the given pairs and/or occurred_at range; the watermark is not touched."""
    pairs = [(p.device_code, p.device_user_code) for p in body.pairs] or None
    with attendance_run("reprocess"):
        try:
            result = engine.reprocess_events_for_pairs(db, pairs=pairs, from_at=body.from_at, to_at=body.to_at)
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ReprocessResponse(
        events=result.events,
        processed=result.processed,
        records_written=result.records_written,
        skipped_no_mapping=result.skipped_no_mapping,
        skipped_adjusted=result.skipped_adjusted,
    )


@router.get("/raw-events", response_model=RawEventListResponse)
def list_raw_events(
    device_code: Optional[str] = Query(None, alias="deviceCode"),
    device_user_code: Optional[str] = Query(None, alias="deviceUserCode"),
    from_at: Optional[datetime] = Query(None, alias="from"),
    to_at: Optional[datetime] = Query(None, alias="to"),
    cursor: Optional[int] = Query(None, description="id of the last row of the previous page"),
    take: int = Query(RAW_EVENTS_DEFAULT_TAKE, ge=1, le=RAW_EVENTS_MAX_TAKE),
    db: Session = Depends(get_db),
):
    """Newest punches first, keyset-paginated on (occurred_at, id)."""
    query = db.query(AttendanceMachineEvent)
    if device_code and device_code.strip():
        query = query.filter(AttendanceMachineEvent.device_code == device_code.strip())
    if device_user_code and device_user_code.strip():
        query = query.filter(AttendanceMachineEvent.device_user_code == device_user_code.strip())
    if from_at is not None:
        query = query.filter(AttendanceMachineEvent.occurred_at >= ensure_utc(from_at))
    if to_at is not None:
        query = query.filter(AttendanceMachineEvent.occurred_at <= ensure_utc(to_at))
    if cursor is not None:
        anchor = db.query(AttendanceMachineEvent).filter(AttendanceMachineEvent.id == cursor).first()
        if anchor is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid cursor")
        query = query.filter(
            or_(
                AttendanceMachineEvent.occurred_at < anchor.occurred_at,
                and_(
                    AttendanceMachineEvent.occurred_at == anchor.occurred_at,
                    AttendanceMachineEvent.id < anchor.id,
                ),
            )
        )

    rows = (
        query.order_by(AttendanceMachineEvent.occurred_at.desc(), AttendanceMachineEvent.id.desc())
        .limit(take + 1)
        .all()
    )
    has_more = len(rows) > take
    rows = rows[:take]

    pairs = {(row.device_code, row.device_user_code) for row in rows}
    mapping_by_pair = {}
    if pairs:
        mappings = (
            db.query(AttendanceDeviceUserMapping)
            .options(joinedload(AttendanceDeviceUserMapping.employee))
            .filter(AttendanceDeviceUserMapping.device_code.in_({d for d, _ in pairs}))
            .all()
        )
        mapping_by_pair = {
            (m.device_code, m.device_user_code): m
            for m in mappings
            if (m.device_code, m.device_user_code) in pairs
        }

    items = []
    for row in rows:
        item = RawEventOut.model_validate(row)
        mapping = mapping_by_pair.get((row.device_code, row.device_user_code))
        if mapping is not None:
            item.employee = RawEventEmployee(
                id=mapping.employee_id,
                code=mapping.employee.emp_code if mapping.employee else None,
                name=mapping.employee.name if mapping.employee else None,
                is_active=mapping.is_active,
            )
        items.append(item)

    return RawEventListResponse(items=items, next_cursor=rows[-1].id if has_more and rows else None)
