"""Key-value backends for session records.

Provides:
- ``SessionStore`` — the narrow async interface the session manager needs.
- ``RedisSessionStore`` — production backend over ``redis.asyncio``.
- ``InMemorySessionStore`` — process-local backend for single-node
  development and tests, with Redis-compatible TTL semantics.

``ttl()`` follows Redis: ``-2`` for a missing key, ``-1`` for a key without
expiry, otherwise the remaining seconds.
"""

from __future__ import annotations

import fnmatch
import logging
import math
import time
from typing import Callable, Optional, Protocol, runtime_checkable

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Async key-value operations used by ``SessionManager``."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: int) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def expire(self, key: str, ttl: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def add_to_set(self, key: str, *members: str) -> int: ...

    async def remove_from_set(self, key: str, *members: str) -> int: ...

    async def set_members(self, key: str) -> set[str]: ...

    async def scan_keys(self, pattern: str) -> list[str]: ...


# ── Redis ───────────────────────────────────────────────────────


class RedisSessionStore:
    """``SessionStore`` over a ``redis.asyncio`` client.

    Usage::

        store = RedisSessionStore.from_url(config.redis_url)
        manager = SessionManager(store, config.sessions)
        ...
        await store.close()
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._redis = client

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._redis.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._redis.setex(key, ttl, value)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self._redis.exists(key))

    async def expire(self, key: str, ttl: int) -> bool:
        return bool(await self._redis.expire(key, ttl))

    async def ttl(self, key: str) -> int:
        return int(await self._redis.ttl(key))

    async def add_to_set(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self._redis.sadd(key, *members))

    async def remove_from_set(self, key: str, *members: str) -> int:
        if not members:
            return 0
        return int(await self._redis.srem(key, *members))

    async def set_members(self, key: str) -> set[str]:
        return set(await self._redis.smembers(key))

    async def scan_keys(self, pattern: str) -> list[str]:
        return [key async for key in self._redis.scan_iter(match=pattern, count=500)]

    async def close(self) -> None:
        await self._redis.aclose()


# ── In-memory ───────────────────────────────────────────────────


class InMemorySessionStore:
    """Process-local ``SessionStore``.

    Expired entries are dropped lazily on access. Not shared between
    processes; use ``RedisSessionStore`` for anything multi-node.

    Args:
        clock: Returns the current UNIX time in seconds. Injected for tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._values: dict[str, str | set[str]] = {}
        self._expires_at: dict[str, float] = {}

    def _alive(self, key: str) -> bool:
        deadline = self._expires_at.get(key)
        if deadline is not None and deadline <= self._clock():
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
        return key in self._values

    def _set_of(self, key: str) -> set[str]:
        if not self._alive(key):
            return set()
        value = self._values[key]
        if not isinstance(value, set):
            raise TypeError(f"WRONGTYPE key {key} does not hold a set")
        return value

    async def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        value = self._values[key]
        if isinstance(value, set):
            raise TypeError(f"WRONGTYPE key {key} holds a set")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._values[key] = value
        self._expires_at[key] = self._clock() + ttl

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
        return removed

    async def exists(self, key: str) -> bool:
        return self._alive(key)

    async def expire(self, key: str, ttl: int) -> bool:
        if not self._alive(key):
            return False
        self._expires_at[key] = self._clock() + ttl
        return True

    async def ttl(self, key: str) -> int:
        if not self._alive(key):
            return -2
        deadline = self._expires_at.get(key)
        if deadline is None:
            return -1
        return max(0, math.ceil(deadline - self._clock()))

    async def add_to_set(self, key: str, *members: str) -> int:
        current = self._set_of(key)
        added = len(set(members) - current)
        if members:
            self._values[key] = current | set(members)
        return added

    async def remove_from_set(self, key: str, *members: str) -> int:
        current = self._set_of(key)
        removed = len(current & set(members))
        remaining = current - set(members)
        if remaining:
            self._values[key] = remaining
        elif key in self._values:
            # Redis deletes a set once its last member is removed
            self._values.pop(key, None)
            self._expires_at.pop(key, None)
        return removed

    async def set_members(self, key: str) -> set[str]:
        return set(self._set_of(key))

    async def scan_keys(self, pattern: str) -> list[str]:
        return [key for key in list(self._values) if self._alive(key) and fnmatch.fnmatchcase(key, pattern)]

    async def close(self) -> None:
        self._values.clear()
        self._expires_at.clear()


__all__ = [
    "InMemorySessionStore",
    "RedisSessionStore",
    "SessionStore",
]
