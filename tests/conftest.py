"""Shared fixtures for advotecate_auth tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from advotecate_auth.config import SessionConfig, TokenConfig
from advotecate_auth.sessions import InMemorySessionStore, SessionManager
from advotecate_auth.tokens import TokenService

ACCESS_SECRET = "test-access-secret-0123456789abcdef"  # nosec B105
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"  # nosec B105


class FakeClock:
    """Settable clock shared by the store (UNIX seconds) and the manager (datetime)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self.current

    def time(self) -> float:
        return self.current.timestamp()

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def token_service(token_config) -> TokenService:
    return TokenService(token_config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(max_concurrent_sessions=3, store_timeout_seconds=0.5)


@pytest.fixture
def store(clock) -> InMemorySessionStore:
    return InMemorySessionStore(clock=clock.time)


@pytest.fixture
def session_manager(store, session_config, clock) -> SessionManager:
    return SessionManager(store, session_config, clock=clock.now)
