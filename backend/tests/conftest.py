"""Shared pytest fixtures for all tests."""

import asyncio
import os

# Settings are read at import time, so the environment has to be in place first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DISCORD_BOT_TOKEN", "test-bot-token")
os.environ.setdefault("DISCORD_CHANNEL_ID", "123456789")
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-secret")
os.environ.setdefault("APP_ENV", "test")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from blobcord.core.crypto import ChunkCipher
from blobcord.core.database import Base
from blobcord.models.chunk import Chunk  # noqa: F401
from blobcord.models.file import File  # noqa: F401
from blobcord.services.discord_client import DiscordClient, RetryPolicy


class FakeClock:
    """Monotonic clock that only moves when the client sleeps."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def close_clients(clients):
    async def close_all():
        for http in clients:
            await http.aclose()

    # Own loop so the one pytest-asyncio manages is left alone
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(close_all())
    finally:
        loop.close()


@pytest.fixture
def db_session():
    """
    In-memory SQLite session shared across connections.

    StaticPool keeps a single connection so every session sees the same
    database.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def cipher():
    return ChunkCipher.from_secret("test-encryption-secret")


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_discord_client(fake_clock):
    """
    Build a DiscordClient whose HTTP layer is an httpx.MockTransport.

    Sleeps are recorded on fake_clock instead of actually waiting.
    """
    clients = []

    def factory(handler, **policy_overrides):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="https://discord.test/api/v10",
        )
        clients.append(http)
        return DiscordClient(
            token="test-bot-token",
            channel_id="123456789",
            policy=RetryPolicy(**policy_overrides),
            http=http,
            clock=fake_clock,
            sleep=fake_clock.sleep,
        )

    yield factory
    close_clients(clients)


@pytest.fixture
def make_cdn_client():
    """Plain httpx.AsyncClient for CDN downloads, served by a MockTransport."""
    clients = []

    def factory(handler):
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(http)
        return http

    yield factory
    close_clients(clients)
