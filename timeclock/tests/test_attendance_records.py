"""
Tests for attendance record listing and manual adjustment
"""
from datetime import date, timedelta

import pytest
from fastapi import status

from timeclock.models.attendance import AttendanceRecord, AttendanceSource, AttendanceStatus

WORK_DAY = date(2024, 3, 4)
URL = "/api/v1/attendance-records"


@pytest.fixture
def month_of_records(db, test_employee):
    statuses = [AttendanceStatus.PRESENT, AttendanceStatus.LATE, AttendanceStatus.ABSENT]
    records = []
    for i, record_status in enumerate(statuses):
        record = AttendanceRecord(
            employee_id=test_employee.id,
            work_date=WORK_DAY + timedelta(days=i),
            status=record_status,
        )
        db.add(record)
        records.append(record)
    db.commit()
    for record in records:
        db.refresh(record)
    return records


def test_list_records_in_range(client, month_of_records):
    response = client.get(URL, params={"from": "2024-03-01", "to": "2024-03-31"})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["total"] == 3
    # Newest day first
    assert [item["work_date"] for item in data["items"]] == ["2024-03-06", "2024-03-05", "2024-03-04"]


def test_list_records_filters(client, month_of_records, test_employee):
    response = client.get(URL, params={
        "from": "2024-03-01",
        "to": "2024-03-31",
        "status": "LATE",
        "employee_id": test_employee.id,
    })

    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["status"] == "LATE"


def test_list_records_rejects_inverted_range(client):
    response = client.get(URL, params={"from": "2024-03-31", "to": "2024-03-01"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_adjust_record_pins_it(client, db, month_of_records, test_employee):
    record = month_of_records[1]

    response = client.patch(f"{URL}/{record.id}/adjust", json={
        "adjusted_by": test_employee.id,
        "check_in_at": "2024-03-05T08:00:00+07:00",
        "check_out_at": "2024-03-05T17:00:00+07:00",
        "status": "PRESENT",
        "note": "Traffic accident, approved",
    })

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["is_adjusted"] is True
    assert data["source"] == AttendanceSource.MANUAL.value
    assert data["status"] == "PRESENT"
    assert data["adjusted_by"] == test_employee.id
    assert data["adjust_note"] == "Traffic accident, approved"
    assert data["check_in_at"] == "2024-03-05T08:00:00+07:00"
    assert data["check_out_at"] == "2024-03-05T17:00:00+07:00"
    assert data["adjusted_at"] is not None


def test_adjust_unknown_record(client, db, test_employee):
    response = client.patch(f"{URL}/9999/adjust", json={"adjusted_by": test_employee.id})
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_adjust_unknown_adjuster(client, month_of_records):
    response = client.patch(f"{URL}/{month_of_records[0].id}/adjust", json={"adjusted_by": 9999})
    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_adjust_rejects_checkout_before_checkin(client, month_of_records, test_employee):
    response = client.patch(f"{URL}/{month_of_records[0].id}/adjust", json={
        "adjusted_by": test_employee.id,
        "check_in_at": "2024-03-04T17:00:00+07:00",
        "check_out_at": "2024-03-04T08:00:00+07:00",
    })
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
