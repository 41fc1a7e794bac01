"""
Dependencies and guards for FastAPI endpoints
"""
import hmac
from typing import Generator, Optional
from fastapi import Header, HTTPException, status
from timeclock.core.config import settings
from timeclock.db.session import SessionLocal


def get_db() -> Generator:
    """Dependency for getting database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def require_system_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    """
    Guard for device/system endpoints.

    Only enforced when ATTENDANCE_API_KEY is configured; user authentication
    lives in the upstream gateway, not here.
    """
    expected = settings.ATTENDANCE_API_KEY
    if not expected:
        return None
    if x_api_key is None or not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return None
