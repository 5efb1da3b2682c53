"""Pytest configuration and shared fixtures for kiosk tests."""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from kiosk.models import Base
from kiosk.services.kiosk_service import KioskService
from kiosk.services.ledger import LedgerSnapshot
from kiosk.services.state_store import InMemoryStateStore, SqlStateStore
from kiosk.services.sync_service import StateSynchronizer


@pytest.fixture
def memory_store():
    """Process-local store shared by every instance in a test."""
    return InMemoryStateStore()


@pytest.fixture
def sql_engine():
    """In-memory SQLite engine with state tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(sql_engine):
    """SQL-backed store; broadcasts are delivered on poll()."""
    return SqlStateStore(sessionmaker(autocommit=False, autoflush=False, bind=sql_engine))


@pytest.fixture
def make_synchronizer():
    """Factory for started synchronizers (one per simulated instance)."""
    started = []

    def _make(store, bucket_count=30):
        synchronizer = StateSynchronizer(store, bucket_count=bucket_count)
        synchronizer.start()
        started.append(synchronizer)
        return synchronizer

    yield _make
    for synchronizer in started:
        synchronizer.close()


@pytest.fixture
def make_instance():
    """Factory for started kiosk instances sharing a store."""
    started = []

    def _make(store, bucket_count=30):
        synchronizer = StateSynchronizer(store, bucket_count=bucket_count)
        service = KioskService(synchronizer)
        synchronizer.start()
        started.append(synchronizer)
        return service

    yield _make
    for synchronizer in started:
        synchronizer.close()


def make_snapshot(accumulated=None, capacity=300, bucket_count=30) -> LedgerSnapshot:
    """Ledger snapshot helper: accumulated maps bucket index -> total."""
    values = [Decimal(0)] * bucket_count
    for index, total in (accumulated or {}).items():
        values[index] = Decimal(str(total))
    return LedgerSnapshot(Decimal(str(capacity)), tuple(values))


@pytest.fixture
def snapshot_factory():
    """Expose make_snapshot to tests."""
    return make_snapshot
