"""Test fixtures using a real in-memory SQLite database and a fake clock."""

from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import pytest_asyncio

from duckling.chat.gateway import AIGateway
from duckling.chat.history import ConversationStore
from duckling.config import Settings
from duckling.events import Event, EventBus
from duckling.i18n import Localizer
from duckling.pet.lifecycle import LifecycleController
from duckling.pet.status import StatusEngine
from duckling.storage.database import Database
from duckling.storage.preferences import SqlPreferenceStore
from duckling.utils import to_millis

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def drain_events(bus: EventBus) -> list[Event]:
    """Pop everything queued on a bus that was never started."""
    events: list[Event] = []
    while True:
        try:
            events.append(bus._queue.get_nowait())
        except asyncio.QueueEmpty:
            return events


def event_types(bus: EventBus) -> list[str]:
    return [e.type for e in drain_events(bus)]


async def seed_status(
    store: SqlPreferenceStore,
    hunger: float = 50.0,
    cleanliness: float = 50.0,
    happiness: float = 50.0,
    at: datetime = T0,
    **extra,
) -> None:
    """Write a persisted pet status with every timestamp at `at`."""
    values = {
        "hunger": hunger,
        "cleanliness": cleanliness,
        "happiness": happiness,
        "lastUpdate": to_millis(at),
        "lastFeed": to_millis(at),
        "lastClean": to_millis(at),
        "lastPlay": to_millis(at),
        "isDead": False,
        "deathCause": "none",
    }
    values.update(extra)
    await store.set_many(values)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    # Explicit empty key so a developer's OPENAI_API_KEY never leaks into tests
    return Settings(db_url="sqlite+aiosqlite:///:memory:", OPENAI_API_KEY="")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def db(settings):
    """Fresh in-memory database per test."""
    database = Database(settings)
    await database.connect()
    yield database
    await database.disconnect()


@pytest.fixture
def store(db) -> SqlPreferenceStore:
    return SqlPreferenceStore(db)


@pytest.fixture
def localizer(store) -> Localizer:
    return Localizer(store)


@pytest.fixture
def bus() -> EventBus:
    """Bus that is never started: events stay queued for inspection."""
    return EventBus()


@pytest.fixture
def engine(store, settings, clock) -> StatusEngine:
    return StatusEngine(store, settings.life, clock=clock)


@pytest.fixture
def lifecycle(engine, bus, localizer) -> LifecycleController:
    return LifecycleController(engine, bus, localizer)


# ---------------------------------------------------------------------------
# Chat completion service
# ---------------------------------------------------------------------------

VALID_KEY = "sk-test-0123456789abcdefghij"


def completion(text: str) -> dict:
    """Chat-completions response body with a single choice."""
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": text}}]}


class FakeService:
    """MockTransport handler: records request bodies, answers with a canned completion."""

    def __init__(self) -> None:
        self.requests: list[dict] = []
        self.headers: list[httpx.Headers] = []
        self.reply = "Quack! Hello friend!"
        self.status_code = 200
        self.body: dict | None = None
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        self.headers.append(request.headers)
        if self.error is not None:
            raise self.error
        body = self.body if self.body is not None else completion(self.reply)
        return httpx.Response(self.status_code, json=body)

    @property
    def last(self) -> dict:
        return self.requests[-1]


@pytest.fixture
def service() -> FakeService:
    return FakeService()


@pytest_asyncio.fixture
async def http_client(service):
    async with httpx.AsyncClient(transport=httpx.MockTransport(service)) as client:
        yield client


@pytest_asyncio.fixture
async def gateway(settings, store, localizer, http_client) -> AIGateway:
    """Gateway with a valid key and an empty conversation."""
    gw = AIGateway(
        settings,
        ConversationStore(store, settings.history_limit),
        store,
        localizer,
        http_client,
    )
    await gw.set_api_key(VALID_KEY)
    return gw
