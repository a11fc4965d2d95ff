"""
Per-connection session state
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CONNECTED = "connected"
    IDENTIFIED = "identified"
    IDLE_TIMEOUT = "idle_timeout"
    CLOSED = "closed"


class Session:
    """
    State for one tracker connection.

    The device identifier is written at most once: the first login frame or
    location record that carries one binds it for the life of the connection.
    """

    def __init__(self, conn_id: str, peername=None, now: Optional[datetime] = None):
        now = now or datetime.now(timezone.utc)
        self.conn_id = conn_id
        self.peername = peername
        self.device_id: Optional[str] = None
        self.state = SessionState.CONNECTED
        self.message_count = 0
        self.connected_at = now
        self.last_activity = now

    @property
    def is_identified(self) -> bool:
        return self.device_id is not None

    @property
    def is_open(self) -> bool:
        return self.state in (SessionState.CONNECTED, SessionState.IDENTIFIED)

    def touch(self, now: Optional[datetime] = None):
        """Record inbound bytes"""
        self.last_activity = now or datetime.now(timezone.utc)

    def record_message(self, now: Optional[datetime] = None):
        self.message_count += 1
        self.touch(now)

    def identify(self, device_id: str, source: str = "unknown") -> str:
        """
        Bind the device identifier if none is set yet.

        Returns:
            The session's identifier after the call; an already bound
            identifier is never replaced
        """
        if self.device_id is None:
            self.device_id = device_id
            if self.state == SessionState.CONNECTED:
                self.state = SessionState.IDENTIFIED
            logger.info(f"Device ID identified: {device_id} for {self.conn_id} (from {source})")
        elif device_id != self.device_id:
            logger.warning(f"Device ID mismatch on {self.conn_id}: session is {self.device_id}, "
                           f"{source} record carries {device_id}; keeping {self.device_id}")
        return self.device_id

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.last_activity).total_seconds()

    def mark_idle_timeout(self):
        if self.is_open:
            self.state = SessionState.IDLE_TIMEOUT

    def close(self):
        self.state = SessionState.CLOSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.conn_id,
            'device_id': self.device_id,
            'state': self.state.value,
            'peername': str(self.peername),
            'messages': self.message_count,
            'connected_at': self.connected_at.isoformat(),
            'last_activity': self.last_activity.isoformat(),
        }
