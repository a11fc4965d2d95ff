"""
Coordinate, unit and timestamp conversions shared by the tracker decoders.
"""

import math
import re
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import parser as date_parser
from dateutil.parser import ParserError

KNOTS_TO_KMH = 1.852
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

UNIX_SECONDS = re.compile(r'^\d{10}$')
UNIX_MILLIS = re.compile(r'^\d{13}$')
COMPACT_DATETIME = re.compile(r'^\d{14}$')
COMPACT_DATE = re.compile(r'^\d{8}$')


def sexagesimal_to_decimal(value: float, hemisphere: str) -> float:
    """
    Convert a DDMM.MMMM (or DDDMM.MMMM) value to decimal degrees.

    The last two integer digits are minutes, everything before them is whole
    degrees. No clamping is applied: range checks belong to the caller.

    Args:
        value: Sexagesimal value, e.g. 3635.1452
        hemisphere: N/S/E/W; S and W give a negative result

    Returns:
        Decimal degrees
    """
    degrees, minutes = divmod(value, 100)
    decimal = degrees + minutes / 60.0
    if hemisphere and hemisphere.upper() in ('S', 'W'):
        decimal = -decimal
    return decimal


def knots_to_kmh(speed: float) -> float:
    return speed * KNOTS_TO_KMH


def is_valid_coordinate(lat: float, lon: float) -> bool:
    """Validate GPS coordinates, excluding the 0,0 "no fix" position"""
    if lat is None or lon is None:
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return (-90 <= lat <= 90 and -180 <= lon <= 180
            and not (lat == 0 and lon == 0))


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    """
    Parse the timestamp encodings trackers use.

    Tried in order: 10-digit Unix seconds, 13-digit Unix milliseconds,
    YYYYMMDDHHMMSS, YYYYMMDD, then a general date-string parse.
    Results are timezone-aware UTC.

    Returns:
        The parsed instant, or None when nothing matched
    """
    if not text:
        return None

    value = text.strip()
    if not value:
        return None

    try:
        if UNIX_SECONDS.match(value):
            return EPOCH + timedelta(seconds=int(value))

        if UNIX_MILLIS.match(value):
            return EPOCH + timedelta(milliseconds=int(value))

        if COMPACT_DATETIME.match(value):
            return datetime.strptime(value, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)

        if COMPACT_DATE.match(value):
            return datetime.strptime(value, "%Y%m%d").replace(tzinfo=timezone.utc)
    except ValueError:
        # Right length but not a real date, e.g. month 13
        pass

    try:
        parsed = date_parser.parse(value)
    except (ParserError, ValueError, OverflowError):
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_display_time(ts: datetime, offset_hours: int) -> datetime:
    """Shift a UTC instant into the deployment's display timezone"""
    return ts.astimezone(timezone(timedelta(hours=offset_hours)))
