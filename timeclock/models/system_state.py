"""
Key/value store for durable engine state (e.g. the reconciliation watermark)
"""
from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.sql import func
from timeclock.db.base import Base


class SystemState(Base):
    __tablename__ = "system_state"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.current_timestamp(), onupdate=func.current_timestamp(), nullable=False)
