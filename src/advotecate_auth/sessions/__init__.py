"""Server-side sessions: storage backends and lifecycle management."""

from .manager import CleanupResult, SessionData, SessionManager, SessionStats
from .store import InMemorySessionStore, RedisSessionStore, SessionStore

__all__ = [
    "CleanupResult",
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionData",
    "SessionManager",
    "SessionStats",
    "SessionStore",
]
