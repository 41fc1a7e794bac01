"""
Tests for the backfill entry point and mapping-triggered reprocessing
"""
from datetime import date, datetime, timedelta

import pytest

from timeclock.models.attendance import AttendanceRecord, AttendanceStatus
from timeclock.models.system_state import SystemState
from timeclock.schemas.attendance_machine import IncomingLog
from timeclock.services import attendance_machine_service as engine
from timeclock.services.attendance_ingest_service import ingest_device_logs
from timeclock.services.attendance_record_service import adjust_record
from timeclock.services.device_mapping_service import upsert_mapping
from timeclock.utils.datetime_utils import combine_date_time, ensure_utc

WORK_DAY = date(2024, 3, 4)
DEVICE = "DEV-01"
PAIR = (DEVICE, "100")


def at(day: date, hhmm: str) -> datetime:
    return combine_date_time(day, hhmm, 420)


def punch(db, *instants: datetime, user_code: str = "100"):
    logs = [IncomingLog(user_code=user_code, epoch_ms=int(i.timestamp() * 1000)) for i in instants]
    return ingest_device_logs(db, DEVICE, logs)


def test_reprocess_pairs_does_not_touch_watermark(db, test_mapping, day_shift):
    punch(db, at(WORK_DAY, "07:55"), at(WORK_DAY, "17:00"))

    result = engine.reprocess_events_for_pairs(db, pairs=[PAIR], now=at(WORK_DAY, "18:00"))

    assert result.events == 2
    assert result.processed == 1
    assert result.records_written == 1
    assert db.query(AttendanceRecord).one().status == AttendanceStatus.PRESENT
    assert db.get(SystemState, "attendanceMachine:lastProcessedEpoch") is None
    assert engine.read_watermark(db) == 0


def test_reprocess_range_only_touches_days_in_range(db, test_mapping):
    later_day = WORK_DAY + timedelta(days=5)
    punch(db, at(WORK_DAY, "09:00"), at(WORK_DAY, "15:00"), at(later_day, "09:00"))

    result = engine.reprocess_events_for_pairs(
        db,
        from_at=at(WORK_DAY, "00:00"),
        to_at=at(WORK_DAY, "23:59"),
        now=at(later_day, "18:00"),
    )

    assert result.events == 2
    records = db.query(AttendanceRecord).all()
    assert [r.work_date for r in records] == [WORK_DAY]


def test_reprocess_range_edge_still_sees_whole_day(db, test_mapping, day_shift):
    punch(db, at(WORK_DAY, "07:55"), at(WORK_DAY, "17:00"))

    # Only the checkout punch falls inside the range
    engine.reprocess_events_for_pairs(
        db,
        from_at=at(WORK_DAY, "16:00"),
        to_at=at(WORK_DAY, "18:00"),
        now=at(WORK_DAY, "18:00"),
    )

    record = db.query(AttendanceRecord).one()
    assert ensure_utc(record.check_in_at) == at(WORK_DAY, "07:55")
    assert record.status == AttendanceStatus.PRESENT


def test_reprocess_requires_scope(db):
    with pytest.raises(ValueError):
        engine.reprocess_events_for_pairs(db)


def test_reprocess_rejects_inverted_range(db):
    with pytest.raises(ValueError):
        engine.reprocess_events_for_pairs(
            db, from_at=at(WORK_DAY, "18:00"), to_at=at(WORK_DAY, "08:00")
        )


def test_reprocess_honours_adjustment(db, test_employee, test_mapping, day_shift):
    punch(db, at(WORK_DAY, "07:55"), at(WORK_DAY, "17:00"))
    engine.reprocess_events_for_pairs(db, pairs=[PAIR], now=at(WORK_DAY, "18:00"))
    record = db.query(AttendanceRecord).one()
    adjust_record(db, record.id, test_employee.id, status_value=AttendanceStatus.ABSENT, note="Sick leave")

    result = engine.reprocess_events_for_pairs(db, pairs=[PAIR], now=at(WORK_DAY, "18:00"))

    assert result.skipped_adjusted == 1
    db.expire_all()
    assert db.query(AttendanceRecord).one().status == AttendanceStatus.ABSENT


def test_mapping_upsert_backfills_recent_days(db, test_employee, day_shift):
    punch(db, at(WORK_DAY, "07:55"), at(WORK_DAY, "17:00"))
    result = engine.process_attendance_machine_events(db, now=at(WORK_DAY, "18:00"))
    assert result.skipped_no_mapping == 2
    assert db.query(AttendanceRecord).count() == 0

    upsert_mapping(db, DEVICE, "100", test_employee.id, now=at(WORK_DAY, "18:00"))

    record = db.query(AttendanceRecord).one()
    assert record.employee_id == test_employee.id
    assert record.status == AttendanceStatus.PRESENT
