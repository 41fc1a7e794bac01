"""
Version and metadata endpoint
"""
from fastapi import APIRouter
from timeclock.core.config import settings
from timeclock.core.constants import SERVICE_NAME

router = APIRouter()


@router.get("/version")
async def get_version():
    """
    Get application version and metadata

    Returns:
        Version information including service name, version, environment and org clock
    """
    return {
        "service": SERVICE_NAME,
        "version": settings.VERSION or "1.0.0",
        "env": settings.APP_ENV,
        "time_zone": settings.APP_TIME_ZONE,
        "time_zone_offset_minutes": settings.APP_TIME_ZONE_OFFSET_MINUTES,
    }
