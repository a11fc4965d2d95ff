"""
Storage collaborator used by the ingestion path.

Every write opens its own short session so calls from many connections
(each running in a worker thread) never share ORM state.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, List

from sqlalchemy import or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from database.models import Device, GpsLog, DeviceCommand
from database.schemas import (
    NormalizedLocation, CommandCreate, CommandResponse, CommandStatus,
    DeviceResponse, GpsLogResponse,
)
from tcp_server.errors import StorageError

logger = logging.getLogger(__name__)

UPSERT_DIALECTS = {
    'postgresql': pg_insert,
    'sqlite': sqlite_insert,
}


class LocationStore:
    """Insert/query contract over the gateway tables"""

    def __init__(self, session_factory=None):
        if session_factory is None:
            from database.db_conf import Session
            session_factory = Session
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(f"Database error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _upsert_device(self, session, device_id: str, **values):
        """Insert the device row or update only the given columns"""
        dialect = session.get_bind().dialect.name
        insert = UPSERT_DIALECTS.get(dialect)

        if insert is None:
            device = session.get(Device, device_id) or Device(device_id=device_id)
            for key, value in values.items():
                setattr(device, key, value)
            session.add(device)
            return

        stmt = insert(Device).values(device_id=device_id, **values)
        if values:
            stmt = stmt.on_conflict_do_update(
                index_elements=[Device.device_id],
                set_={key: getattr(stmt.excluded, key) for key in values},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[Device.device_id])
        session.execute(stmt)

    def insert_location(self, location: NormalizedLocation) -> int:
        """
        Persist a location and refresh the device's last_seen.

        Returns:
            The new gps_logs row id

        Raises:
            StorageError: the record is unattributed or the write failed
        """
        if not location.device_id:
            raise StorageError("Location has no device identifier")

        with self._session() as session:
            log = GpsLog(
                device_id=location.device_id,
                lat=location.latitude,
                lon=location.longitude,
                speed=location.speed,
                altitude=location.altitude,
                heading=location.heading,
                timestamp=location.timestamp,
                protocol=location.protocol,
                raw_data=location.raw_data,
            )
            session.add(log)
            session.flush()
            self._upsert_device(session, location.device_id,
                                last_seen=datetime.now(timezone.utc))
            record_id = log.id

        logger.debug(f"Stored location {record_id} for device {location.device_id}")
        return record_id

    def lookup_device_by(self, identifier: str) -> Optional[DeviceResponse]:
        """Find a device by its id or its SIM phone number"""
        with self._session() as session:
            device = (
                session.query(Device)
                .filter(or_(Device.device_id == identifier, Device.phone_number == identifier))
                .first()
            )
            return DeviceResponse.model_validate(device) if device else None

    def set_device_phone(self, device_id: str, phone_number: str):
        with self._session() as session:
            self._upsert_device(session, device_id, phone_number=phone_number)

    def latest_location(self, device_id: str) -> Optional[GpsLogResponse]:
        with self._session() as session:
            log = (
                session.query(GpsLog)
                .filter(GpsLog.device_id == device_id)
                .order_by(GpsLog.timestamp.desc(), GpsLog.id.desc())
                .first()
            )
            return GpsLogResponse.model_validate(log) if log else None

    def insert_command(self, command: CommandCreate) -> int:
        with self._session() as session:
            self._upsert_device(session, command.device_id)
            row = DeviceCommand(
                device_id=command.device_id,
                command_type=command.command_type,
                command_text=command.command_text,
                status=command.status.value,
            )
            session.add(row)
            session.flush()
            return row.id

    def get_command(self, command_id: int) -> Optional[CommandResponse]:
        with self._session() as session:
            row = session.get(DeviceCommand, command_id)
            return CommandResponse.model_validate(row) if row else None

    def update_command_status(self, command_id: int, status: CommandStatus,
                              response_data: Optional[str] = None) -> bool:
        """Set a command's status, stamping sent/response times. False if missing."""
        with self._session() as session:
            row = session.get(DeviceCommand, command_id)
            if row is None:
                return False

            now = datetime.now(timezone.utc)
            row.status = status.value
            if status == CommandStatus.SENT:
                row.sent_at = now
            elif status == CommandStatus.COMPLETED:
                row.response_received_at = now
            if response_data is not None:
                row.response_data = response_data
            return True

    def get_pending_commands(self, device_id: Optional[str] = None) -> List[CommandResponse]:
        with self._session() as session:
            query = session.query(DeviceCommand).filter(
                DeviceCommand.status == CommandStatus.PENDING.value)
            if device_id:
                query = query.filter(DeviceCommand.device_id == device_id)
            rows = query.order_by(DeviceCommand.created_at.asc(), DeviceCommand.id.asc()).all()
            return [CommandResponse.model_validate(row) for row in rows]

    def get_command_history(self, device_id: str, limit: int = 50) -> List[CommandResponse]:
        with self._session() as session:
            rows = (
                session.query(DeviceCommand)
                .filter(DeviceCommand.device_id == device_id)
                .order_by(DeviceCommand.created_at.desc(), DeviceCommand.id.desc())
                .limit(limit)
                .all()
            )
            return [CommandResponse.model_validate(row) for row in rows]
