"""
Pytest configuration and fixtures.

Provides shared fixtures for all tests including:
- Frozen UTC clock and a recording sleep
- SQLite-backed session factory (one database file per test)
- Application settings
"""

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from stratosphere.core.config import Settings
from stratosphere.database import create_engine_for, create_session_factory, init_db


class FrozenClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that records delays and advances the clock."""

    def __init__(self, clock: FrozenClock = None):
        self.calls: List[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    """Clock frozen at 2026-03-10 12:00 UTC."""
    return FrozenClock(datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sleep(clock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
async def db_engine(tmp_path):
    """Create test database engine (file DB so concurrent sessions share state)."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(target=engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test database."""
    return create_session_factory(db_engine)


@pytest.fixture
async def broken_session_factory(tmp_path):
    """Session factory whose database file can never be opened."""
    engine = create_engine_for(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'test.db'}")

    yield create_session_factory(engine)

    await engine.dispose()


@pytest.fixture
def settings() -> Settings:
    """Settings for a mock-mode deployment."""
    return Settings(
        ENVIRONMENT="test",
        APP_URL="https://app.example.com",
        GSC_MOCK_MODE=True,
        GSC_CLIENT_ID="test-client-id.apps.googleusercontent.com",
        GSC_CLIENT_SECRET="test-client-secret",
        OAUTH_STATE_SECRET="test-oauth-state-secret-0123456789abcdef",
    )
