"""
GPS Tracker packet classification and location decoders
"""
from datetime import datetime
from typing import Optional, Type, List
import logging
import re
from .base import BaseLocationDecoder
from .tagged import TaggedDecoder
from .positional import PositionalDecoder
from .keyvalue import KeyValueDecoder
from .hq import HQDecoder
from database.schemas import NormalizedLocation
from tcp_server.messages import ClassifiedPacket, PacketKind, RawMessage

logger = logging.getLogger(__name__)

HEARTBEAT_PATTERNS = [
    re.compile(r'^(?:\d+,)?(?:heartbeat|ping|alive)$', re.IGNORECASE),
    re.compile(r'^ST900,heartbeat', re.IGNORECASE),
]

LOGIN_PATTERNS = [
    re.compile(r'^(?:\d+,)?(?:login|connect|hello)$', re.IGNORECASE),
    re.compile(r'^ST900,login', re.IGNORECASE),
    re.compile(r'imei:\d+,login', re.IGNORECASE),
]

# IMEI-like number inside a login frame
LOGIN_DEVICE_ID = re.compile(r'\d{10,}')


class PacketClassifier:
    """Classify inbound lines and decode location reports"""

    # Priority order: first decoder to produce a record wins
    DECODERS: List[Type[BaseLocationDecoder]] = [
        TaggedDecoder,
        PositionalDecoder,
        KeyValueDecoder,
        HQDecoder,
    ]

    def __init__(self, strict_timestamps: Optional[bool] = None):
        self.decoders = [decoder_class(strict_timestamps) for decoder_class in self.DECODERS]

    @staticmethod
    def is_heartbeat(data: str) -> bool:
        return any(pattern.search(data) for pattern in HEARTBEAT_PATTERNS)

    @staticmethod
    def is_login(data: str) -> bool:
        return any(pattern.search(data) for pattern in LOGIN_PATTERNS)

    @staticmethod
    def extract_login_device_id(data: str) -> Optional[str]:
        match = LOGIN_DEVICE_ID.search(data)
        return match.group(0) if match else None

    def decode_location(self, data: str, received_at: datetime) -> Optional[NormalizedLocation]:
        """Run the decoders in priority order, containing failures of each one"""
        for decoder in self.decoders:
            try:
                location = decoder.try_decode(data, received_at)
            except Exception:
                logger.exception(f"{decoder.get_protocol_name()} decoder failed on: {data[:100]}")
                continue

            if location is not None:
                logger.debug(f"Decoded {decoder.get_protocol_name()} location")
                return location

        return None

    def classify(self, message: RawMessage) -> ClassifiedPacket:
        """Heartbeat and login patterns are checked before any decoder runs"""
        data = message.text.strip()

        if self.is_heartbeat(data):
            return ClassifiedPacket(kind=PacketKind.HEARTBEAT)

        if self.is_login(data):
            return ClassifiedPacket(kind=PacketKind.LOGIN,
                                    device_id=self.extract_login_device_id(data))

        location = self.decode_location(data, message.received_at)
        if location is not None:
            return ClassifiedPacket(kind=PacketKind.LOCATION, location=location)

        logger.warning(f"No decoder matched message: {data[:100]}")
        return ClassifiedPacket(kind=PacketKind.UNRECOGNIZED)

    def get_supported_protocols(self) -> List[str]:
        """Get decoder names in priority order"""
        return [decoder.get_protocol_name() for decoder in self.decoders]


__all__ = [
    'BaseLocationDecoder',
    'TaggedDecoder',
    'PositionalDecoder',
    'KeyValueDecoder',
    'HQDecoder',
    'PacketClassifier',
]
