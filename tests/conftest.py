import time
from datetime import datetime, timezone
from typing import List

import pytest
from sqlalchemy.orm import sessionmaker

from database.db_conf import create_db_engine, init_db
from database.storage import LocationStore
from tcp_server.errors import StorageError


RECEIVED_AT = datetime(2025, 9, 9, 12, 0, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory stand-in for LocationStore.insert_location"""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.locations: List = []

    def insert_location(self, location):
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise StorageError("disk full")
        self.locations.append(location)
        return len(self.locations)


@pytest.fixture
def received_at():
    return RECEIVED_AT


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def store():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield LocationStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    engine.dispose()
