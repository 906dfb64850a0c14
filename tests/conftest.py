"""
Shared fixtures: a file-backed SQLite store and a frozen clock.
"""

import pytest

from slotbook.adapters import SqlSchedulingStore, create_db_engine, create_schema
from slotbook.services import AvailabilityService, BookingService, FixedClock

from .helpers import local


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'slotbook.db'}", busy_timeout_seconds=5)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlSchedulingStore(engine)


@pytest.fixture
def clock():
    # Sunday noon, the day before the Monday most tests book on
    return FixedClock(local("2024-06-09 12:00"))


@pytest.fixture
def availability(store, clock):
    return AvailabilityService(store, clock, slot_duration_minutes=30)


@pytest.fixture
def booking(store, clock, availability):
    return BookingService(store, clock, availability)
