"""
Device user -> employee mapping schemas
"""
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator


class DeviceMappingUpsert(BaseModel):
    device_code: str = Field(..., alias="deviceCode")
    device_user_code: str = Field(..., alias="deviceUserCode")
    employee_id: int = Field(..., alias="employeeId")
    note: Optional[str] = None
    is_active: Optional[bool] = Field(None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("device_code", "device_user_code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DeviceMappingOut(BaseModel):
    id: int
    device_code: str
    device_user_code: str
    employee_id: int
    employee_code: Optional[str] = None
    employee_name: Optional[str] = None
    is_active: bool
    note: Optional[str] = None


class DeviceMappingListResponse(BaseModel):
    ok: bool = True
    items: List[DeviceMappingOut]


class DeviceMappingDeleteResponse(BaseModel):
    ok: bool = True
    deleted: int
