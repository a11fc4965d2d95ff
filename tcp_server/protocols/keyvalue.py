"""
Free-form key:value format
Example: imei:8160528336,lat:35.1234,lng:36.5678,speed:40,time:1609459200
"""
from typing import Optional
from datetime import datetime
import re
from .base import BaseLocationDecoder
from database.schemas import NormalizedLocation


class KeyValueDecoder(BaseLocationDecoder):
    """imei/lat/lng key:value pairs in any order, with common synonyms"""

    PAIR_PATTERN = re.compile(r'(\w+):([^,]+)')

    def get_protocol_name(self) -> str:
        return "keyvalue"

    def decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        pairs = {key.lower(): value.strip() for key, value in self.PAIR_PATTERN.findall(data)}

        lon_value = pairs.get('lng') or pairs.get('lon')
        if not (pairs.get('imei') and pairs.get('lat') and lon_value):
            return None

        lat = self.parse_number(pairs['lat'], 'latitude')
        lon = self.parse_number(lon_value, 'longitude')

        return self.build_location(
            pairs['imei'], lat, lon,
            timestamp=self.resolve_timestamp(pairs.get('time'), received_at),
            raw=data,
            speed=self.parse_optional_number(pairs.get('speed')),
            heading=self.parse_optional_number(pairs.get('heading') or pairs.get('course')),
            altitude=self.parse_optional_number(pairs.get('alt') or pairs.get('altitude')),
        )
