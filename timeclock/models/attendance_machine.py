"""
Time-clock device models: raw punch log and device user -> employee mapping.
"""
from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from timeclock.db.base import Base


class AttendanceMachineEvent(Base):
    """One raw punch as received from a device. Rows are never updated after insert."""
    __tablename__ = "attendance_machine_events"

    id = Column(Integer, primary_key=True, index=True)
    epoch = Column(BigInteger, nullable=False, unique=True, index=True)  # ingestion sequence, watermark unit
    device_code = Column(String, nullable=False)
    device_user_code = Column(String, nullable=False)
    occurred_at = Column(DateTime(timezone=True), nullable=False, index=True)  # UTC
    epoch_ms = Column(BigInteger, nullable=False)  # device clock, ms since unix epoch
    machine_id = Column(Integer, nullable=True)
    device_ip = Column(String, nullable=True)
    user_sn = Column(Integer, nullable=True)
    verify_type = Column(String, nullable=True)
    in_out = Column(String, nullable=True)
    dedupe_key = Column(String, nullable=False, unique=True)
    raw = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)

    __table_args__ = (
        Index("ix_machine_events_device_user", "device_code", "device_user_code"),
    )


class AttendanceDeviceUserMapping(Base):
    __tablename__ = "attendance_device_user_mappings"

    id = Column(Integer, primary_key=True, index=True)
    device_code = Column(String, nullable=False, index=True)
    device_user_code = Column(String, nullable=False)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("device_code", "device_user_code", name="uq_device_user_mapping"),
    )

    employee = relationship("Employee", backref="device_mappings")
