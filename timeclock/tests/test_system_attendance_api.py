"""
Tests for the device-facing system attendance endpoints
"""
from datetime import date, datetime

from fastapi import status

from timeclock.core import run_lock
from timeclock.core.config import settings
from timeclock.models.attendance import AttendanceRecord, AttendanceStatus
from timeclock.models.attendance_machine import AttendanceMachineEvent
from timeclock.utils.datetime_utils import combine_date_time

WORK_DAY = date(2024, 3, 4)
IMPORT_URL = "/api/v1/system/attendance/import"
PROCESS_URL = "/api/v1/system/attendance/process"
REPROCESS_URL = "/api/v1/system/attendance/reprocess"
RAW_EVENTS_URL = "/api/v1/system/attendance/raw-events"


def at(day: date, hhmm: str) -> datetime:
    return combine_date_time(day, hhmm, 420)


def ms(day: date, hhmm: str) -> int:
    return int(at(day, hhmm).timestamp() * 1000)


def import_logs(client, *logs, device_code="DEV-01", headers=None):
    return client.post(IMPORT_URL, json={"deviceCode": device_code, "logs": list(logs)}, headers=headers)


def test_import_counts_inserted_duplicate_and_invalid_logs(client, db):
    logs = [
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55"), "verifyType": "FP"},
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55"), "verifyType": "FP"},
        {"epochMs": ms(WORK_DAY, "08:00")},
        {"userCode": "100", "epochMs": "not-a-number"},
    ]

    response = import_logs(client, *logs)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["received"] == 4
    assert data["inserted"] == 1
    assert data["duplicates"] == 1
    assert data["skipped"] == 2


def test_import_is_idempotent(client, db):
    log = {"userCode": 100, "epochMs": ms(WORK_DAY, "07:55")}
    import_logs(client, log)

    response = import_logs(client, log)

    assert response.json()["inserted"] == 0
    assert response.json()["duplicates"] == 1
    assert db.query(AttendanceMachineEvent).count() == 1


def test_import_assigns_increasing_epochs(client, db):
    import_logs(client, {"userCode": "100", "epochMs": ms(WORK_DAY, "17:00")})
    import_logs(
        client,
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55")},
        {"userCode": "200", "epochMs": ms(WORK_DAY, "08:10"), "deviceCode": "DEV-02"},
    )

    rows = db.query(AttendanceMachineEvent).order_by(AttendanceMachineEvent.epoch).all()
    assert [r.epoch for r in rows] == [1, 2, 3]
    assert [r.device_code for r in rows] == ["DEV-01", "DEV-01", "DEV-02"]
    assert rows[0].device_user_code == "100"


def test_import_rejects_empty_payload(client):
    response = import_logs(client)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_process_endpoint_reconciles(client, db, test_mapping, day_shift):
    import_logs(
        client,
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55")},
        {"userCode": "100", "epochMs": ms(WORK_DAY, "17:00")},
    )

    response = client.post(PROCESS_URL, json={"batchSize": 500})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["batches"] == 1
    assert data["last_epoch"] == 2
    assert data["records_written"] == 1
    assert db.query(AttendanceRecord).one().status == AttendanceStatus.PRESENT


def test_process_endpoint_without_body(client, db):
    response = client.post(PROCESS_URL)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["batches"] == 0


def test_process_endpoint_refuses_concurrent_run(client, db):
    assert run_lock.run_lock.acquire(blocking=False)
    try:
        response = client.post(PROCESS_URL)
    finally:
        run_lock.run_lock.release()

    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["detail"] == "Attendance processing is already running"


def test_reprocess_endpoint_requires_scope(client):
    response = client.post(REPROCESS_URL, json={})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_reprocess_endpoint_by_pair(client, db, test_mapping):
    import_logs(
        client,
        {"userCode": "100", "epochMs": ms(WORK_DAY, "09:00")},
        {"userCode": "100", "epochMs": ms(WORK_DAY, "15:00")},
    )

    response = client.post(
        REPROCESS_URL,
        json={"pairs": [{"deviceCode": "DEV-01", "deviceUserCode": "100"}]},
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["processed"] == 1
    assert db.query(AttendanceRecord).one().status == AttendanceStatus.NO_SHIFT


def test_api_key_enforced_when_configured(client, db, monkeypatch):
    monkeypatch.setattr(settings, "ATTENDANCE_API_KEY", "device-secret")
    log = {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55")}

    assert import_logs(client, log).status_code == status.HTTP_401_UNAUTHORIZED
    assert import_logs(client, log, headers={"X-API-Key": "wrong"}).status_code == status.HTTP_401_UNAUTHORIZED
    response = import_logs(client, log, headers={"X-API-Key": "device-secret"})
    assert response.status_code == status.HTTP_200_OK


def test_raw_events_paginate_newest_first(client, db, test_mapping):
    import_logs(
        client,
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55")},
        {"userCode": "100", "epochMs": ms(WORK_DAY, "12:00")},
        {"userCode": "999", "epochMs": ms(WORK_DAY, "17:00")},
    )

    first = client.get(RAW_EVENTS_URL, params={"deviceCode": "DEV-01", "take": 2})

    assert first.status_code == status.HTTP_200_OK
    page = first.json()
    assert [item["device_user_code"] for item in page["items"]] == ["999", "100"]
    assert page["items"][0]["employee"] is None
    assert page["items"][1]["employee"]["code"] == "EMP001"
    assert page["items"][1]["occurred_at"] == "2024-03-04T12:00:00+07:00"
    assert page["next_cursor"] is not None

    second = client.get(RAW_EVENTS_URL, params={"deviceCode": "DEV-01", "take": 2, "cursor": page["next_cursor"]})

    rest = second.json()
    assert [item["occurred_at"] for item in rest["items"]] == ["2024-03-04T07:55:00+07:00"]
    assert rest["next_cursor"] is None


def test_raw_events_filter_by_user(client, db):
    import_logs(
        client,
        {"userCode": "100", "epochMs": ms(WORK_DAY, "07:55")},
        {"userCode": "200", "epochMs": ms(WORK_DAY, "08:00")},
    )

    response = client.get(RAW_EVENTS_URL, params={"deviceUserCode": "200"})

    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["device_user_code"] == "200"


def test_raw_events_take_is_bounded(client):
    response = client.get(RAW_EVENTS_URL, params={"take": 500})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
