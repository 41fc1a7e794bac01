"""
Configuration management for the time-clock attendance service
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Required settings
    DATABASE_URL: str = Field(..., description="SQLAlchemy database URL")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # Organisation clock. Calendar days are computed with this fixed offset, never the host zone.
    APP_TIME_ZONE: str = Field(default="Asia/Ho_Chi_Minh", description="Timezone label (display only)")
    APP_TIME_ZONE_OFFSET_MINUTES: int = Field(
        default=7 * 60,
        description="Fixed UTC offset in minutes used to derive work dates and shift instants",
    )

    # Reconciliation engine
    ATTENDANCE_BATCH_SIZE: int = Field(default=5000, gt=0, description="Max punch events per batch")
    CHECKIN_BUFFER_MINUTES: int = Field(default=60, ge=0, description="Minutes before shift start a punch may check in")
    AUTO_CHECKOUT_AFTER_HOURS: int = Field(default=8, ge=0, description="Hours after shift end before auto checkout")
    NEXT_SHIFT_BUFFER_HOURS: int = Field(default=2, ge=0, description="Hours kept free before the next day's shift")

    # Device ingestion: when set, /system/attendance/* requires the X-API-Key header
    ATTENDANCE_API_KEY: Optional[str] = Field(default=None, description="Shared key for device ingestion")

    # Version (can be git SHA or semver)
    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("APP_TIME_ZONE_OFFSET_MINUTES")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        if not (-14 * 60 <= v <= 14 * 60):
            raise ValueError("APP_TIME_ZONE_OFFSET_MINUTES must be within +/-840")
        return v

    def validate_production(self) -> None:
        """
        Validate settings for production environment

        Raises:
            ValueError: If production settings are invalid
        """
        if self.APP_ENV == "prod":
            # Devices post raw punches over the network; an open endpoint is not acceptable in prod
            if not self.ATTENDANCE_API_KEY:
                raise ValueError(
                    "ATTENDANCE_API_KEY must be set in production environment"
                )


# Create settings instance
settings = Settings()

# Validate production settings if in prod
if settings.APP_ENV == "prod":
    settings.validate_production()
