from config import settings
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.exc import OperationalError, DBAPIError, DisconnectionError
import logging
import time

from database.models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_uri: str, echo: bool = False) -> Engine:
    """Create a database engine with appropriate configuration based on the database type"""
    if database_uri.startswith('sqlite'):
        # Storage writes run in worker threads, so the connection must be shareable
        connect_args = {'check_same_thread': False}
        if database_uri in ('sqlite://', 'sqlite:///:memory:'):
            # In-memory database has to live on a single connection
            return create_engine(database_uri, connect_args=connect_args,
                                 poolclass=StaticPool, echo=echo)
        logger.info("Using SQLite storage")
        return create_engine(database_uri, connect_args=connect_args, echo=echo)

    # PostgreSQL configuration
    engine = create_engine(
        database_uri,
        pool_size=20,        # One checkout per in-flight storage write
        max_overflow=20,
        pool_pre_ping=True,  # Check connection validity
        pool_recycle=300,    # Recycle every 5 minutes
        pool_timeout=30,
        pool_use_lifo=True,  # Use LIFO for connection reuse
        echo=echo,
        connect_args={
            'connect_timeout': 10,
            'keepalives': 1,
            'keepalives_idle': 30,
            'keepalives_interval': 10,
            'keepalives_count': 5,
        }
    )
    logger.info("Using PostgreSQL storage")
    return engine


engine = create_db_engine(settings.get_database_url(), echo=settings.DATABASE_ECHO)

Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine = None):
    """Create the gateway tables if they do not exist"""
    Base.metadata.create_all(bind=bind or engine)


def test_db_connection(max_retries=3):
    """
    Tests the database connection with exponential backoff.

    Returns:
        tuple: (success boolean, message string)
    """
    retry_count = 0
    backoff = 1

    while retry_count < max_retries:
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True, "Database connection successful"
        except (OperationalError, DisconnectionError, DBAPIError) as e:
            retry_count += 1
            if retry_count < max_retries:
                logger.info(f"Retrying connection in {backoff} seconds (attempt {retry_count}/{max_retries})")
                time.sleep(backoff)
                backoff = min(backoff * 2, 10)
            else:
                return False, f"Database connection failed after {max_retries} attempts: {e}"

    return False, "Database connection failed with an unknown error"
