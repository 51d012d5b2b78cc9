"""Shared fakes and fixtures for the story sync tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from services.openai.story_generator import GeneratedElement
from services.realtime.ai_coauthor import AICoAuthor
from services.realtime.broadcast_gateway import BroadcastGateway
from services.realtime.errors import GenerationError
from services.realtime.invite_tokens import InviteTokenStore
from services.realtime.session_store import SessionRegistry
from services.session_cache import SessionCache


class FakeConnection:
    """Records every event the gateway sends to it."""

    def __init__(self, connection_id: str):
        self.connection_id = connection_id
        self.sent: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = False

    async def send(self, event: str, data: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.sent.append((event, data))

    def events(self) -> List[str]:
        return [event for event, _ in self.sent]

    def payloads(self, event: str) -> List[Dict[str, Any]]:
        return [data for name, data in self.sent if name == event]


class FakeGenerator:
    """Story generator double; records contexts and can be told to fail."""

    def __init__(self, content: str = "A ghost whispered from the shadow.", tags=("supernatural",), fail=False):
        self.content = content
        self.tags = list(tags)
        self.fail = fail
        self.calls = []

    async def generate(self, context):
        self.calls.append(context)
        if self.fail:
            raise GenerationError("provider unavailable")
        return GeneratedElement(content=self.content, intensity=5, tags=list(self.tags))


class ManualClock:
    """Controllable UTC clock for expiry tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def invites():
    return InviteTokenStore()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def cache():
    return SessionCache()


@pytest.fixture
def gateway(registry, invites, generator, cache):
    return BroadcastGateway(registry, invites, coauthor=AICoAuthor(generator), cache=cache)


@pytest.fixture
def connect():
    """Factory for fake connections with sequential ids."""
    counter = iter(range(1, 1000))

    def _connect(name: Optional[str] = None) -> FakeConnection:
        return FakeConnection(name or f"conn-{next(counter)}")

    return _connect


@pytest.fixture
def make_session(gateway):
    """Create a session through the gateway and return its id."""

    async def _make(connection, title="Test", user_name="alice", **extra) -> str:
        await gateway.handle(connection, "session:create", {"title": title, "userName": user_name, **extra})
        return connection.payloads("session:created")[-1]["id"]

    return _make
