"""
ST-900 tagged format
Example: ST900,ID:8160528336,Lat:35.1234,Lon:36.5678,Speed:40,Time:20250909
"""
from typing import Optional
from datetime import datetime
import re
import logging
from .base import BaseLocationDecoder
from database.schemas import NormalizedLocation

logger = logging.getLogger(__name__)


class TaggedDecoder(BaseLocationDecoder):
    """Handler for the ST900-prefixed key:value format"""

    PREFIX_PATTERN = re.compile(r'^ST900,', re.IGNORECASE)
    TOKEN_PATTERN = re.compile(r'^\s*(\w+)\s*:\s*(.*?)\s*$')

    def get_protocol_name(self) -> str:
        return "ST900"

    def decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        if not self.PREFIX_PATTERN.match(data):
            return None

        # Keys are matched case-insensitively, first occurrence wins
        fields = {}
        for token in data.split(',')[1:]:
            match = self.TOKEN_PATTERN.match(token)
            if match:
                fields.setdefault(match.group(1).lower(), match.group(2))

        device_id = fields.get('id')
        if not device_id or 'lat' not in fields or 'lon' not in fields:
            return None

        lat = self.parse_number(fields['lat'], 'latitude')
        lon = self.parse_number(fields['lon'], 'longitude')

        return self.build_location(
            device_id, lat, lon,
            timestamp=self.resolve_timestamp(fields.get('time'), received_at),
            raw=data,
            speed=self.parse_optional_number(fields.get('speed')),
        )
