"""Shared fixtures for LatMon tests."""

from datetime import datetime, timedelta, timezone

import pytest
from PySide6.QtCore import QCoreApplication

from latmon.database import Database
from latmon.registry import MonitoringRegistry
from latmon.store import MeasurementStore


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

    def ago(self, **kwargs) -> datetime:
        return self.now - timedelta(**kwargs)


@pytest.fixture(scope="session")
def qapp():
    """Create QCoreApplication instance for tests."""
    app = QCoreApplication.instance()
    if app is None:
        app = QCoreApplication([])
    yield app


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    db = Database(tmp_path / "latmon.db")
    db.open()
    yield db
    db.close()


@pytest.fixture
def registry(database):
    return MonitoringRegistry(database)


@pytest.fixture
def store(database, clock):
    return MeasurementStore(database, clock=clock)
