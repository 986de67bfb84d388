"""Global pytest fixtures for the TeePals rounds service.

This module provides shared fixtures for testing including:
- An in-memory coordinator wired to recording collaborators
- Mock database sessions for store unit tests
- An ASGI client for API tests
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import date
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from teepals.rounds.allocator import CapacityAllocator
from teepals.rounds.collaborators import (
    InMemoryProfileDirectory,
    InMemorySocialGraph,
    ProfileSnapshot,
    RecordingEventPublisher,
)
from teepals.rounds.config import RoundSettings
from teepals.rounds.repository import MemoryRoundStore
from teepals.rounds.service import RoundService

HOST = "host"
PLAYERS = ["alice", "bob", "carol", "dave", "erin", *[f"player{i}" for i in range(12)]]


def complete_profile(uid: str) -> ProfileSnapshot:
    """Profile that passes the tier-1 gate."""
    return ProfileSnapshot(
        uid=uid,
        nickname=uid.title(),
        primary_city="Austin, TX",
        primary_location=(30.2672, -97.7431),
        birth_date=date(1990, 5, 17),
        gender="female",
    )


class SlowMemoryStore(MemoryRoundStore):
    """Memory store whose reads and commits yield to the loop, widening race windows."""

    def __init__(self, delay: float = 0.01):
        super().__init__()
        self.delay = delay

    async def lock_round(self, round_id):
        await asyncio.sleep(self.delay)
        return await super().lock_round(round_id)

    async def save(self, round_, membership=None, delete_uid=None):
        await asyncio.sleep(self.delay)
        await super().save(round_, membership, delete_uid=delete_uid)


# ===========================================
# COORDINATOR FIXTURES
# ===========================================


@pytest.fixture
def settings() -> RoundSettings:
    return RoundSettings(lock_timeout_seconds=2.0, log_json=False)


@pytest.fixture
def store() -> MemoryRoundStore:
    return MemoryRoundStore()


@pytest.fixture
def allocator(settings: RoundSettings) -> CapacityAllocator:
    return CapacityAllocator(settings.lock_timeout_seconds)


@pytest.fixture
def social_graph() -> InMemorySocialGraph:
    return InMemorySocialGraph()


@pytest.fixture
def profiles() -> InMemoryProfileDirectory:
    directory = InMemoryProfileDirectory()
    for uid in [HOST, *PLAYERS]:
        directory.upsert(complete_profile(uid))
    return directory


@pytest.fixture
def publisher() -> RecordingEventPublisher:
    return RecordingEventPublisher()


@pytest.fixture
def service(
    store: MemoryRoundStore,
    allocator: CapacityAllocator,
    social_graph: InMemorySocialGraph,
    profiles: InMemoryProfileDirectory,
    publisher: RecordingEventPublisher,
    settings: RoundSettings,
) -> RoundService:
    return RoundService(
        store,
        allocator=allocator,
        social_graph=social_graph,
        profile_gate=profiles,
        publisher=publisher,
        settings=settings,
    )


@pytest.fixture
def slow_service(
    allocator: CapacityAllocator,
    social_graph: InMemorySocialGraph,
    profiles: InMemoryProfileDirectory,
    publisher: RecordingEventPublisher,
    settings: RoundSettings,
) -> RoundService:
    """Coordinator over a store that yields to the loop on every read and commit."""
    return RoundService(
        SlowMemoryStore(),
        allocator=allocator,
        social_graph=social_graph,
        profile_gate=profiles,
        publisher=publisher,
        settings=settings,
    )


@pytest.fixture
def make_round(service: RoundService):
    """Factory creating a round hosted by ``HOST``."""

    async def _make(**kwargs):
        kwargs.setdefault("host_uid", HOST)
        kwargs.setdefault("title", "Saturday 18 at Lions")
        kwargs.setdefault("max_players", 4)
        kwargs.setdefault("join_policy", "approval")
        return await service.create_round(**kwargs)

    return _make


# ===========================================
# DATABASE SESSION FIXTURES
# ===========================================


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncMock, None]:
    """Create a mock async database session for store unit tests."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = lambda obj: None
    session.in_transaction = lambda: False

    yield session


# ===========================================
# HTTP CLIENT FIXTURES
# ===========================================


@pytest.fixture
def app(profiles: InMemoryProfileDirectory, social_graph: InMemorySocialGraph, publisher):
    """App instance with the in-memory store and test collaborators."""
    from teepals.main import create_app

    application = create_app()
    application.state.profile_gate = profiles
    application.state.social_graph = social_graph
    application.state.publisher = publisher
    return application


@pytest_asyncio.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for API testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
