"""
Base decoder for tracker location formats
"""
from abc import ABC, abstractmethod
from typing import Optional
from datetime import datetime
import logging
import math
from pydantic import ValidationError

from config import settings
from database.schemas import NormalizedLocation
from tcp_server.errors import ParseReject
from utils.conversions import is_valid_coordinate, parse_timestamp

logger = logging.getLogger(__name__)


class BaseLocationDecoder(ABC):
    """
    Base class for location format decoders.

    decode() returns None when the line is not in this format and raises
    ParseReject when the format matched but a field is unusable.
    try_decode() folds both into "no match".
    """

    def __init__(self, strict_timestamps: Optional[bool] = None):
        if strict_timestamps is None:
            strict_timestamps = settings.STRICT_TIMESTAMPS
        self.strict_timestamps = strict_timestamps

    @abstractmethod
    def get_protocol_name(self) -> str:
        """Get the name of this format"""
        pass

    @abstractmethod
    def decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        """Decode a line, None if it is not in this format"""
        pass

    def try_decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        try:
            return self.decode(data, received_at)
        except ParseReject as e:
            logger.warning(f"Rejected {self.get_protocol_name()} record: {e.reason}, data: {data[:100]}")
            return None

    def parse_number(self, value: Optional[str], field: str) -> float:
        """Parse a required numeric field"""
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ParseReject(self.get_protocol_name(), f"malformed {field}: {value!r}")

    @staticmethod
    def parse_optional_number(value: Optional[str], default: float = 0.0) -> float:
        """Parse an optional numeric field, falling back to default"""
        if value is None or not value.strip():
            return default
        try:
            number = float(value)
        except ValueError:
            return default
        return number if math.isfinite(number) else default

    def resolve_timestamp(self, value: Optional[str], received_at: datetime) -> datetime:
        """
        Timestamp for a record: parsed from value, or the arrival time when the
        format carries none. An unparseable value falls back to arrival time
        unless strict timestamps are enabled.
        """
        if value is None or not value.strip():
            return received_at

        parsed = parse_timestamp(value)
        if parsed is not None:
            return parsed

        if self.strict_timestamps:
            raise ParseReject(self.get_protocol_name(), f"unparseable timestamp: {value!r}")
        logger.warning(f"Unparseable {self.get_protocol_name()} timestamp {value!r}, using arrival time")
        return received_at

    def build_location(self, device_id: Optional[str], lat: float, lon: float,
                       timestamp: datetime, raw: str, speed: float = 0.0,
                       heading: float = 0.0, altitude: float = 0.0) -> NormalizedLocation:
        """Validate coordinates and assemble the normalized record"""
        if not is_valid_coordinate(lat, lon):
            raise ParseReject(self.get_protocol_name(), f"invalid coordinates: {lat}, {lon}")

        # A tiny negative heading wraps to exactly 360.0 in float arithmetic
        heading = heading % 360
        if heading >= 360:
            heading = 0.0

        try:
            return NormalizedLocation(
                device_id=device_id or None,
                latitude=lat,
                longitude=lon,
                speed=max(0.0, speed),
                heading=heading,
                altitude=altitude,
                timestamp=timestamp,
                raw_data=raw,
                protocol=self.get_protocol_name(),
            )
        except ValidationError as e:
            raise ParseReject(self.get_protocol_name(), f"invalid record: {e.errors()[0]['msg']}")
