from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    APP_NAME: str = "st900-gateway"
    PROD: bool = False

    # Storage collaborator (SQLite file by default, PostgreSQL in production)
    DATABASE_URL: str = "sqlite:///gps_tracker.db"
    DATABASE_ECHO: bool = False

    # GPS TCP Server configuration
    GPS_TCP_HOST: str = "0.0.0.0"
    GPS_TCP_PORT: int = 8090
    SEND_GREETING: bool = True  # Some trackers expect OK before sending anything

    # Connection management
    CONNECTION_TIMEOUT: int = 1800  # 30 minutes idle timeout
    SWEEP_INTERVAL: int = 30
    STATS_INTERVAL: int = 300
    MAX_CONNECTIONS: int = 1000
    MAX_MESSAGE_SIZE: int = 4096
    MAX_BUFFER_SIZE: int = 8192  # Unframed bytes per connection
    MAX_QUEUED_LINES: int = 100  # Lines awaiting handling before reads pause

    # Bound on a single storage write, in seconds
    STORAGE_TIMEOUT: float = 10.0

    # Decoding
    STRICT_TIMESTAMPS: bool = False
    DISPLAY_TZ_OFFSET_HOURS: int = 3

    LOG_FILE: Optional[str] = "./logs/gateway.log"

    def get_database_url(self) -> str:
        """Database URL with the legacy postgres:// scheme normalized"""
        if self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql://", 1)
        return self.DATABASE_URL

    class Config:
        env_file = '.env'


settings = Settings()
