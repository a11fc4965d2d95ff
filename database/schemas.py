from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum

from utils.conversions import is_valid_coordinate


class NormalizedLocation(BaseModel):
    """A decoded position report, the unit handed to storage"""
    device_id: Optional[str] = None  # None until attributed from the session
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: float = Field(0.0, ge=0)  # km/h
    heading: float = Field(0.0, ge=0, lt=360)
    altitude: float = 0.0
    timestamp: datetime
    raw_data: str = ""
    protocol: str = "unknown"

    @field_validator('timestamp')
    @classmethod
    def timestamp_is_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode='after')
    def reject_no_fix(self):
        if not is_valid_coordinate(self.latitude, self.longitude):
            raise ValueError(f"Invalid coordinates: {self.latitude}, {self.longitude}")
        return self

    def attributed_to(self, device_id: str) -> "NormalizedLocation":
        return self.model_copy(update={'device_id': device_id})

    class Config:
        frozen = True


class CommandStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"


class CommandCreate(BaseModel):
    device_id: str
    command_type: str
    command_text: str
    status: CommandStatus = CommandStatus.PENDING


class CommandResponse(CommandCreate):
    id: int
    sent_at: Optional[datetime] = None
    response_received_at: Optional[datetime] = None
    response_data: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class DeviceResponse(BaseModel):
    device_id: str
    name: Optional[str] = None
    phone_number: Optional[str] = None
    last_seen: Optional[datetime] = None
    is_active: bool = True

    class Config:
        from_attributes = True


class GpsLogResponse(BaseModel):
    id: int
    device_id: str
    lat: float
    lon: float
    speed: float
    altitude: float
    heading: float
    timestamp: datetime
    raw_data: Optional[str] = None

    class Config:
        from_attributes = True
