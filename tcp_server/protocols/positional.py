"""
Positional comma-delimited format
Example: 8160528336,35.1234,36.5678,40,0,20250909120000
"""
from typing import Optional
from datetime import datetime
from .base import BaseLocationDecoder
from database.schemas import NormalizedLocation
from utils.conversions import is_valid_coordinate


class PositionalDecoder(BaseLocationDecoder):
    """deviceId,lat,lon,speed,heading,timestamp"""

    MIN_FIELDS = 6

    def get_protocol_name(self) -> str:
        return "positional"

    def decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        parts = [part.strip() for part in data.split(',')]
        if len(parts) < self.MIN_FIELDS:
            return None

        # The format has no marker; numeric, valid coordinates are the only signature
        try:
            lat = float(parts[1])
            lon = float(parts[2])
        except ValueError:
            return None
        if not is_valid_coordinate(lat, lon):
            return None

        return self.build_location(
            parts[0], lat, lon,
            timestamp=self.resolve_timestamp(parts[5], received_at),
            raw=data,
            speed=self.parse_optional_number(parts[3]),
            heading=self.parse_optional_number(parts[4]),
        )
