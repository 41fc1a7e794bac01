"""
Time-clock device schemas: ingestion payload, engine runs, raw event listing.
"""
from datetime import datetime
from typing import Optional, List, Any, Union
from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from timeclock.core.constants import MIN_API_BATCH_SIZE, MAX_API_BATCH_SIZE
from timeclock.utils.datetime_utils import ensure_utc, iso_local


class IncomingLog(BaseModel):
    """One punch as sent by the device bridge. Invalid entries are skipped, not rejected."""
    device_code: Optional[str] = Field(None, alias="deviceCode")
    user_code: Optional[Union[str, int]] = Field(None, alias="userCode")
    epoch_ms: Optional[Union[int, float, str]] = Field(None, alias="epochMs", description="Device clock, ms since epoch")
    verify_type: Optional[str] = Field(None, alias="verifyType")
    in_out: Optional[str] = Field(None, alias="inOut")
    raw: Optional[Any] = None
    user_sn: Optional[int] = Field(None, alias="userSn")
    device_ip: Optional[str] = Field(None, alias="deviceIp")

    model_config = ConfigDict(populate_by_name=True)


class IngestRequest(BaseModel):
    device_code: str = Field(..., alias="deviceCode", min_length=1)
    machine_id: Optional[int] = Field(None, alias="machineId")
    logs: List[IncomingLog] = Field(..., min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class IngestResponse(BaseModel):
    ok: bool = True
    received: int
    inserted: int
    duplicates: int
    skipped: int


class ProcessRequest(BaseModel):
    batch_size: Optional[int] = Field(None, alias="batchSize", description="Clamped to [100, 10000]")

    model_config = ConfigDict(populate_by_name=True)

    def clamped_batch_size(self) -> Optional[int]:
        if self.batch_size is None:
            return None
        return max(MIN_API_BATCH_SIZE, min(self.batch_size, MAX_API_BATCH_SIZE))


class ProcessResponse(BaseModel):
    ok: bool = True
    batches: int
    last_epoch: int
    events: int
    processed_groups: int
    records_written: int
    skipped_no_mapping: int
    skipped_adjusted: int


class DeviceUserPair(BaseModel):
    device_code: str = Field(..., alias="deviceCode", min_length=1)
    device_user_code: str = Field(..., alias="deviceUserCode", min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class ReprocessRequest(BaseModel):
    """Backfill scope: explicit pairs and/or an absolute occurred_at range."""
    pairs: List[DeviceUserPair] = Field(default_factory=list)
    from_at: Optional[datetime] = Field(None, alias="from")
    to_at: Optional[datetime] = Field(None, alias="to")

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def check_scope(self) -> "ReprocessRequest":
        if not self.pairs and self.from_at is None and self.to_at is None:
            raise ValueError("pairs or a from/to range is required")
        if self.from_at is not None and self.to_at is not None and ensure_utc(self.from_at) > ensure_utc(self.to_at):
            raise ValueError("from must be less than or equal to to")
        return self


class ReprocessResponse(BaseModel):
    ok: bool = True
    events: int
    processed: int
    records_written: int
    skipped_no_mapping: int
    skipped_adjusted: int


class RawEventEmployee(BaseModel):
    id: int
    code: Optional[str] = None
    name: Optional[str] = None
    is_active: bool


class RawEventOut(BaseModel):
    id: int
    epoch: int
    device_code: str
    device_user_code: str
    occurred_at: datetime
    epoch_ms: int
    machine_id: Optional[int] = None
    device_ip: Optional[str] = None
    user_sn: Optional[int] = None
    verify_type: Optional[str] = None
    in_out: Optional[str] = None
    raw: Optional[Any] = None
    employee: Optional[RawEventEmployee] = None

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("occurred_at")
    def _ser_datetime(self, dt: datetime) -> Optional[str]:
        return iso_local(dt)


class RawEventListResponse(BaseModel):
    ok: bool = True
    items: List[RawEventOut]
    next_cursor: Optional[int] = None
