"""
Message types passed between the connection layer and the classifier
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from database.schemas import NormalizedLocation


class PacketKind(str, Enum):
    HEARTBEAT = "heartbeat"
    LOGIN = "login"
    LOCATION = "location"
    UNRECOGNIZED = "unrecognized"


class RawMessage(BaseModel):
    """One inbound line as received on a connection"""
    text: str
    conn_id: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        frozen = True


class ClassifiedPacket(BaseModel):
    kind: PacketKind
    device_id: Optional[str] = None  # Login frames only
    location: Optional[NormalizedLocation] = None

    class Config:
        frozen = True
