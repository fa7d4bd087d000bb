import itertools
import json

import fakeredis
import pytest

from admin import AdminControlPlane
from backend import RedisBackend
from connection import Connection
from persistence import PersistenceBridge
from rate_limiter import RateLimiter
from registry import RoomRegistry
from routers.events import EventRouter

ADMIN_SECRET = "test-secret"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def backend(redis_client):
    return RedisBackend(redis_client)


@pytest.fixture
def bridge(backend):
    return PersistenceBridge(backend, timeout=2.0)


def name_cycle(*names):
    return itertools.cycle(names).__next__


@pytest.fixture
def registry(bridge):
    return RoomRegistry(
        bridge,
        message_limit=3,
        max_code_attempts=5,
        name_factory=name_cycle("Guest_Swift_Wolf", "Guest_Brave_Fox", "Guest_Azure_River"),
    )


@pytest.fixture
def admin(registry, bridge):
    return AdminControlPlane(registry, bridge, ADMIN_SECRET)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(window_seconds=60, max_messages=3, clock=clock)


@pytest.fixture
def make_router(registry, admin, limiter, bridge):
    def _make(connection: Connection = None) -> EventRouter:
        return EventRouter(connection or Connection(), registry, admin, limiter, bridge)
    return _make


def frame(event: str, data=None, ack=None) -> str:
    return json.dumps({"event": event, "data": data, "ack": ack})


def events(connection: Connection, name: str = None) -> list:
    """Drain a connection's outbox, optionally keeping one event name."""
    frames = connection.pending()
    if name is None:
        return frames
    return [f["data"] for f in frames if isinstance(f, dict) and f.get("event") == name]


def acks(frames: list) -> dict:
    return {f["ack"]: f["data"] for f in frames if isinstance(f, dict) and "ack" in f}
