"""
Test configuration and fixtures for pytest.
"""

import os

# Must be set before the application modules read their configuration
os.environ["TESTING"] = "True"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SOCKETIO_REDIS_URL"] = ""
os.environ["PUBSUB_BACKEND"] = "memory"

from datetime import datetime, timedelta, UTC

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from matchqueue.core.security import create_access_token
from matchqueue.db.base import Base
from matchqueue.dependencies import db_dependency, pairing_engine_dependency
from matchqueue.main import app
from matchqueue.services.notifications.pubsub import InMemoryPubSub
from matchqueue.services.queue.engine import PairingEngine


class RecordingPubSub(InMemoryPubSub):
    """In-memory pub/sub that also keeps every published event."""

    def __init__(self):
        super().__init__()
        self.published = []

    async def publish(self, topic, payload):
        self.published.append((topic, payload))
        await super().publish(topic, payload)

    def payloads(self, topic):
        return [payload for t, payload in self.published if t == topic]


class FakeClock:
    """Clock that moves forward one microsecond per reading."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self):
        now = self.current
        self.current += timedelta(microseconds=1)
        return now

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def test_engine():
    """Create an in-memory SQLite engine shared by every session in a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    """Session factory configured like the application's SessionLocal."""
    return sessionmaker(
        bind=test_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )


@pytest.fixture
def db_session(session_factory):
    """Create a new database session for a test."""
    session = session_factory()

    yield session

    session.close()


@pytest.fixture
def pubsub():
    return RecordingPubSub()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pairing_engine(session_factory, pubsub, clock):
    """Pairing engine over the test database and recording pub/sub."""
    return PairingEngine(session_factory, pubsub, clock=clock, entry_ttl_seconds=1800)


@pytest.fixture
def seed_queue(session_factory, clock):
    """Insert waiting users directly, in order, without pairing them."""
    from matchqueue.services.queue.store import QueueStore

    async def _seed(*user_ids):
        with session_factory() as db:
            store = QueueStore(db)
            async with store.transaction():
                for user_id in user_ids:
                    await store.insert(user_id, clock())

    return _seed


@pytest.fixture
def client(session_factory, pairing_engine):
    """Create a test client with database and engine overrides."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[db_dependency] = override_get_db
    app.dependency_overrides[pairing_engine_dependency] = lambda: pairing_engine

    yield TestClient(app)

    app.dependency_overrides.clear()


def make_token(user_id):
    return create_access_token(data={"sub": user_id})


@pytest.fixture
def auth_headers():
    """Build Authorization headers for a user id."""

    def _headers(user_id):
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


# Reset test environment at the end of session
def pytest_sessionfinish(session, exitstatus):
    """Clean up after all tests have run."""
    os.environ.pop("TESTING", None)
