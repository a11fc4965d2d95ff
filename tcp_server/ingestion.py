"""
Ingestion facade: one object per connection that turns inbound lines into
stored location records and wire acknowledgments.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel

from config import settings
from database.schemas import NormalizedLocation
from tcp_server.errors import StorageError
from tcp_server.messages import PacketKind, RawMessage
from tcp_server.protocols import PacketClassifier
from tcp_server.session import Session
from utils.conversions import is_valid_coordinate, to_display_time

logger = logging.getLogger(__name__)

# Wire acknowledgments; trackers treat an unanswered line as a failed delivery
ACK_OK = "OK\n"
ACK_LOAD = "LOAD\n"
ACK_ERROR = "ERROR\n"
GREETING = ACK_OK


class IngestionResult(BaseModel):
    kind: PacketKind
    reply: str
    location: Optional[NormalizedLocation] = None
    record_id: Optional[int] = None

    @property
    def stored(self) -> bool:
        return self.record_id is not None


class DeviceIngestion:
    """Session + classifier + storage for a single connection"""

    def __init__(self, session: Session, store, classifier: Optional[PacketClassifier] = None,
                 storage_timeout: Optional[float] = None):
        self.session = session
        self.store = store
        self.classifier = classifier or PacketClassifier()
        self.storage_timeout = storage_timeout if storage_timeout is not None else settings.STORAGE_TIMEOUT

    async def handle_line(self, text: str, received_at: Optional[datetime] = None) -> IngestionResult:
        """Classify one line and produce the acknowledgment to send back"""
        message = RawMessage(
            text=text,
            conn_id=self.session.conn_id,
            received_at=received_at or datetime.now(timezone.utc),
        )
        self.session.record_message(message.received_at)

        packet = self.classifier.classify(message)

        if packet.kind == PacketKind.HEARTBEAT:
            logger.debug(f"Heartbeat from {self.session.conn_id}")
            return IngestionResult(kind=packet.kind, reply=ACK_OK)

        if packet.kind == PacketKind.LOGIN:
            logger.info(f"Login packet from {self.session.conn_id}: {message.text[:100]}")
            if packet.device_id:
                self.session.identify(packet.device_id, source="login")
            return IngestionResult(kind=packet.kind, reply=ACK_LOAD)

        if packet.kind == PacketKind.LOCATION:
            return await self._handle_location(packet.location)

        logger.warning(f"Unable to parse data from {self.session.conn_id}: {message.text[:100]}")
        return IngestionResult(kind=packet.kind, reply=ACK_ERROR)

    def _attribute(self, location: NormalizedLocation) -> Optional[str]:
        """Device id for a record: the session's if bound, else the record's own"""
        if location.device_id is None:
            return self.session.device_id
        return self.session.identify(location.device_id, source=location.protocol)

    async def _handle_location(self, location: NormalizedLocation) -> IngestionResult:
        device_id = self._attribute(location)
        if device_id is None:
            logger.warning(f"Location from {self.session.conn_id} has no device identifier and session is unidentified")
            return IngestionResult(kind=PacketKind.LOCATION, reply=ACK_ERROR, location=location)

        if location.device_id != device_id:
            location = location.attributed_to(device_id)

        # Hard gate before anything reaches storage
        if not is_valid_coordinate(location.latitude, location.longitude):
            logger.warning(f"Refusing invalid coordinates from {device_id}: {location.latitude}, {location.longitude}")
            return IngestionResult(kind=PacketKind.LOCATION, reply=ACK_ERROR, location=location)

        try:
            record_id = await self._persist(location)
        except StorageError as e:
            logger.error(f"Failed to save GPS data from {device_id}: {e}")
            return IngestionResult(kind=PacketKind.LOCATION, reply=ACK_ERROR, location=location)

        local_time = to_display_time(location.timestamp, settings.DISPLAY_TZ_OFFSET_HOURS)
        logger.info(f"GPS data saved (ID: {record_id}) device={device_id} "
                    f"lat={location.latitude:.6f} lon={location.longitude:.6f} "
                    f"speed={location.speed:.1f}km/h time={local_time.isoformat()}")
        return IngestionResult(kind=PacketKind.LOCATION, reply=ACK_OK,
                               location=location, record_id=record_id)

    async def _persist(self, location: NormalizedLocation) -> int:
        """
        Write through the storage collaborator off the event loop.

        A timed-out write keeps running in its thread; only the wait is abandoned.
        """
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.store.insert_location, location),
                timeout=self.storage_timeout,
            )
        except asyncio.TimeoutError:
            raise StorageError(f"Storage write timed out after {self.storage_timeout}s")
