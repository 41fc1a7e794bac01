"""
Tests for configuration validation
"""
import pytest
from pydantic import ValidationError
from timeclock.core.config import Settings


def test_prod_settings_require_api_key():
    """Production must not expose the device ingestion endpoint without a key"""
    settings = Settings(DATABASE_URL="postgresql://test", APP_ENV="prod", ATTENDANCE_API_KEY=None)

    with pytest.raises(ValueError, match="ATTENDANCE_API_KEY"):
        settings.validate_production()


def test_prod_settings_with_api_key_pass():
    settings = Settings(DATABASE_URL="postgresql://test", APP_ENV="prod", ATTENDANCE_API_KEY="device-secret")
    settings.validate_production()


def test_local_settings_allow_missing_api_key():
    settings = Settings(DATABASE_URL="postgresql://test", APP_ENV="local", ATTENDANCE_API_KEY=None)
    settings.validate_production()


def test_engine_defaults():
    settings = Settings(DATABASE_URL="postgresql://test", APP_TIME_ZONE_OFFSET_MINUTES=420)
    assert settings.ATTENDANCE_BATCH_SIZE == 5000
    assert settings.CHECKIN_BUFFER_MINUTES == 60
    assert settings.AUTO_CHECKOUT_AFTER_HOURS == 8
    assert settings.NEXT_SHIFT_BUFFER_HOURS == 2


def test_invalid_app_env_rejected():
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="postgresql://test", APP_ENV="production")


def test_log_level_normalised():
    settings = Settings(DATABASE_URL="postgresql://test", LOG_LEVEL="debug")
    assert settings.LOG_LEVEL == "DEBUG"


@pytest.mark.parametrize("offset", [900, -900])
def test_time_zone_offset_out_of_range_rejected(offset):
    with pytest.raises(ValidationError):
        Settings(DATABASE_URL="postgresql://test", APP_TIME_ZONE_OFFSET_MINUTES=offset)
