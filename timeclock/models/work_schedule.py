"""
Planned shift per employee per calendar day (written by the scheduling subsystem)
"""
from sqlalchemy import Column, Integer, Date, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from timeclock.db.base import Base


class WorkSchedule(Base):
    __tablename__ = "work_schedules"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False, index=True)  # organisation-local calendar day
    planned_start = Column(String(5), nullable=False)  # "HH:MM"
    planned_end = Column(String(5), nullable=False)  # "HH:MM", <= start means next day
    planned_break_minutes = Column(Integer, nullable=True)
    planned_late_grace_minutes = Column(Integer, nullable=True)
    planned_early_grace_minutes = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_work_schedule_employee_date"),
    )

    employee = relationship("Employee", backref="work_schedules")
