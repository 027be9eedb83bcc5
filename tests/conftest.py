from typing import Any, Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from study_buddy.config import Settings
from study_buddy.errors import PeerUnreachable
from study_buddy.main import create_app
from study_buddy.services.channels import Channel
from study_buddy.services.container import build_services
from study_buddy.store.memory import MemoryStore


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingChannel(Channel):
    """Collects every event sent to it; raises once closed"""

    kind = "test"

    def __init__(self):
        self.events: List[Dict[str, Any]] = []
        self.closed = False

    async def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise PeerUnreachable("closed")
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e["type"] == event_type]


def make_settings(**overrides) -> Settings:
    values = dict(
        STORAGE_BACKEND="memory",
        DATABASE_URL="sqlite://",
        MAINTENANCE_INTERVAL_SECONDS=0,
        ARCHIVE_INTERVAL_SECONDS=0,
        MATCH_TIMEOUT_SECONDS=60.0,
        LOG_LEVEL="WARNING",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def services(settings, store):
    svc = build_services(settings, store, sessionmaker())
    yield svc
    await svc.sessions.shutdown()


@pytest.fixture
def connect(services):
    """Register a recording channel and return (connection_id, channel)"""

    def _connect(address: str = "127.0.0.1"):
        channel = RecordingChannel()
        state = services.registry.register(channel, address=address)
        return state.connection_id, channel

    return _connect


@pytest.fixture
def client():
    app = create_app(make_settings())
    with TestClient(app) as test_client:
        yield test_client


def join(user_id: str, tags: List[str]) -> Dict[str, Any]:
    return {"type": "join_queue", "payload": {"user": {"id": user_id, "tags": tags}}}
