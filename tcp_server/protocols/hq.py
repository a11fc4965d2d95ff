"""
H02 delimited record format
Example: *HQ,3072866250,V1,211806,A,3635.1452,N,03702.2586,E,000.00,000,090925,FFFFFBFF#
"""
from typing import Optional
from datetime import datetime, timezone
import re
import logging
from .base import BaseLocationDecoder
from database.schemas import NormalizedLocation
from tcp_server.errors import ParseReject
from utils.conversions import knots_to_kmh, sexagesimal_to_decimal

logger = logging.getLogger(__name__)


class HQDecoder(BaseLocationDecoder):
    """
    Handler for *HQ ... # records

    Fields: HQ, ID, CMD, HHMMSS, A/V, DDMM.MMMM, N/S, DDDMM.MMMM, E/W,
    SPEED (knots), HEADING, DDMMYY[, ...]
    """

    FRAME_PATTERN = re.compile(r'^\*HQ,(.*)#$', re.DOTALL)
    MIN_FIELDS = 12

    def get_protocol_name(self) -> str:
        return "H02"

    def decode(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        match = self.FRAME_PATTERN.match(data)
        if not match:
            return None

        parts = ['HQ'] + [part.strip() for part in match.group(1).split(',')]
        if len(parts) < self.MIN_FIELDS:
            return None

        device_id = parts[1]
        time_str = parts[3]

        # A = valid fix; anything else is a report without a usable position
        if parts[4] != 'A':
            logger.debug(f"Skipping H02 record without valid fix from {device_id}")
            return None

        lat_hemisphere = parts[6].upper()
        lon_hemisphere = parts[8].upper()
        if lat_hemisphere not in ('N', 'S') or lon_hemisphere not in ('E', 'W'):
            raise ParseReject(self.get_protocol_name(),
                              f"bad hemisphere: {parts[6]!r}/{parts[8]!r}")

        lat = sexagesimal_to_decimal(self.parse_number(parts[5], 'latitude'), lat_hemisphere)
        lon = sexagesimal_to_decimal(self.parse_number(parts[7], 'longitude'), lon_hemisphere)

        date_str = parts[11]
        try:
            timestamp = datetime.strptime(f"{date_str}{time_str}", "%d%m%y%H%M%S").replace(tzinfo=timezone.utc)
        except ValueError:
            raise ParseReject(self.get_protocol_name(), f"malformed date/time: {date_str} {time_str}")

        return self.build_location(
            device_id, lat, lon,
            timestamp=timestamp,
            raw=data,
            speed=knots_to_kmh(self.parse_optional_number(parts[9])),
            heading=self.parse_optional_number(parts[10]),
        )
