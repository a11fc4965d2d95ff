from sqlalchemy import Column, String, Float, DateTime, MetaData, BigInteger, Integer, Index, ForeignKey, Text, Boolean
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
metadata = MetaData()
Base = declarative_base(metadata=metadata)


def utcnow():
    return datetime.now(timezone.utc)


class Device(Base):
    __tablename__ = 'devices'

    device_id = Column(String, primary_key=True, nullable=False)
    name = Column(String, nullable=True)
    phone_number = Column(String, nullable=True)
    last_seen = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    commands = relationship("DeviceCommand", back_populates="device",
                            cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_devices_last_seen', 'last_seen'),
        Index('idx_devices_phone_number', 'phone_number'),
    )

    def __repr__(self):
        return f"<Device(device_id={self.device_id}, last_seen={self.last_seen})>"


class GpsLog(Base):
    __tablename__ = 'gps_logs'

    # Integer variant so SQLite gets a rowid alias
    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    # No foreign key: the device row is upserted alongside each insert
    device_id = Column(String, nullable=False)
    lat = Column(Float(precision=53), nullable=False)
    lon = Column(Float(precision=53), nullable=False)
    speed = Column(Float, nullable=False, default=0)
    altitude = Column(Float, nullable=False, default=0)
    heading = Column(Float, nullable=False, default=0)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    protocol = Column(String, nullable=True)
    raw_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index('idx_gps_logs_device_id', 'device_id'),
        Index('idx_gps_logs_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return f"<GpsLog(id={self.id}, device_id={self.device_id}, timestamp={self.timestamp})>"


class DeviceCommand(Base):
    __tablename__ = 'device_commands'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    device_id = Column(String, ForeignKey('devices.device_id', ondelete='CASCADE'), nullable=False)
    command_type = Column(String, nullable=False)
    command_text = Column(String, nullable=False)
    status = Column(String, nullable=False, default='pending')  # pending, sent, completed
    sent_at = Column(DateTime(timezone=True), nullable=True)
    response_received_at = Column(DateTime(timezone=True), nullable=True)
    response_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    device = relationship("Device", back_populates="commands")

    __table_args__ = (
        Index('idx_commands_device_id', 'device_id'),
        Index('idx_commands_status', 'status'),
        Index('idx_commands_created_at', 'created_at'),
    )

    def __repr__(self):
        return f"<DeviceCommand(id={self.id}, device_id={self.device_id}, status={self.status})>"
