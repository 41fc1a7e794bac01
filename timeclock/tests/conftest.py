"""
Pytest configuration and fixtures
"""
import os

# Settings are read at import time; point them at a throwaway database first
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("APP_ENV", "local")
os.environ["APP_TIME_ZONE_OFFSET_MINUTES"] = "420"
os.environ.pop("ATTENDANCE_API_KEY", None)

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402

from timeclock.main import app  # noqa: E402
from timeclock.db.base import Base  # noqa: E402
from timeclock.core.deps import get_db  # noqa: E402
from timeclock.models import (  # noqa: E402,F401
    AttendanceDeviceUserMapping,
    AttendanceEvent,
    AttendanceMachineEvent,
    AttendanceRecord,
    Employee,
    SystemState,
    WorkSchedule,
)
from timeclock.services.attendance_machine_service import ReconcileRules  # noqa: E402

# Use in-memory SQLite for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Enable foreign keys for SQLite
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

OFFSET = 420
DEVICE = "DEV-01"
WORK_DAY = date(2024, 3, 4)  # Monday


@pytest.fixture
def rules():
    return ReconcileRules(
        checkin_buffer_minutes=60,
        auto_checkout_after_hours=8,
        next_shift_buffer_hours=2,
        offset_minutes=OFFSET,
    )

@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def client(db):
    """Test client fixture with database override"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()

@pytest.fixture
def test_employee(db):
    employee = Employee(emp_code="EMP001", name="Nguyen Van A", active=True)
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee

@pytest.fixture
def test_mapping(db, test_employee):
    mapping = AttendanceDeviceUserMapping(
        device_code=DEVICE,
        device_user_code="100",
        employee_id=test_employee.id,
        is_active=True,
    )
    db.add(mapping)
    db.commit()
    db.refresh(mapping)
    return mapping

@pytest.fixture
def day_shift(db, test_employee):
    """08:00-17:00 local, one hour break, five minutes grace either side."""
    schedule = WorkSchedule(
        employee_id=test_employee.id,
        work_date=WORK_DAY,
        planned_start="08:00",
        planned_end="17:00",
        planned_break_minutes=60,
        planned_late_grace_minutes=5,
        planned_early_grace_minutes=5,
    )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule

