"""Server-side session lifecycle.

Sessions live in a ``SessionStore`` under two keys:

- ``{namespace}:session:{id}``: JSON record with an absolute TTL
- ``{namespace}:user_sessions:{user_id}``: set of the user's session ids

A session is valid only while BOTH hold: the record still exists (absolute
TTL) and ``last_activity`` is within the inactivity window. Reads that find
an idle session destroy it.

Every store round trip is bounded by ``SessionConfig.store_timeout_seconds``
and retried once immediately. A second failure is logged at ERROR and the
public operation fails closed (``None`` / ``False`` / empty).
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..config import SessionConfig
from ..exceptions import SessionStoreUnavailableError
from ..logging import get_auth_logger, short_id
from .store import SessionStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class SessionData:
    """One server-side session.

    ``session_id`` is not part of the stored record; it is filled in from
    the key when the record is loaded.
    """

    user_id: str
    email: str
    role: str
    organizations: tuple[str, ...] = ()
    last_activity: datetime = field(default_factory=_utcnow)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    mfa_verified: bool = False
    session_flags: tuple[str, ...] = ()
    created_at: Optional[datetime] = None
    session_id: str = ""

    def to_json(self) -> str:
        record: dict[str, Any] = {
            "userId": self.user_id,
            "email": self.email,
            "role": self.role,
            "organizations": list(self.organizations),
            "lastActivity": _format_datetime(self.last_activity),
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "mfaVerified": self.mfa_verified,
            "sessionFlags": list(self.session_flags),
        }
        if self.created_at is not None:
            record["createdAt"] = _format_datetime(self.created_at)
        return json.dumps(record, separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str, session_id: str = "") -> "SessionData":
        """Parse a stored record.

        Raises:
            ValueError: Not JSON, not an object, or a required field is missing.
        """
        record = json.loads(raw)
        if not isinstance(record, dict):
            raise ValueError("session record is not an object")
        try:
            created_at = record.get("createdAt")
            return cls(
                user_id=str(record["userId"]),
                email=str(record.get("email", "")),
                role=str(record.get("role", "")),
                organizations=tuple(record.get("organizations") or ()),
                last_activity=_parse_datetime(record["lastActivity"]),
                ip_address=record.get("ipAddress"),
                user_agent=record.get("userAgent"),
                mfa_verified=bool(record.get("mfaVerified", False)),
                session_flags=tuple(record.get("sessionFlags") or ()),
                created_at=_parse_datetime(created_at) if created_at else None,
                session_id=session_id,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"invalid session record: {e}") from e


@dataclass(frozen=True)
class CleanupResult:
    cleaned: int = 0
    errors: int = 0


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int = 0
    active_users: int = 0
    avg_session_duration_seconds: float = 0.0


class SessionManager:
    """Create, read, touch and destroy sessions.

    Construct once at start-up and inject where needed::

        store = RedisSessionStore.from_url(config.redis_url)
        sessions = SessionManager(store, config.sessions)
        session_id = await sessions.create_session(SessionData(user_id="u1", email="a@b.c", role="donor"))

    Args:
        store: Key-value backend.
        config: Lifetime, limits and namespace. Defaults to ``SessionConfig()``.
        clock: Returns the current time as an aware datetime. Injected for tests.
    """

    def __init__(
        self,
        store: SessionStore,
        config: SessionConfig | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._config = config or SessionConfig()
        self._clock = clock

    @property
    def config(self) -> SessionConfig:
        return self._config

    # ── Keys ────────────────────────────────────────────

    def session_key(self, session_id: str) -> str:
        return f"{self._config.namespace}:session:{session_id}"

    def user_sessions_key(self, user_id: str) -> str:
        return f"{self._config.namespace}:user_sessions:{user_id}"

    @staticmethod
    def generate_session_id() -> str:
        """64 hex characters (32 random bytes)."""
        return secrets.token_hex(32)

    # ── Store access ────────────────────────────────────

    async def _call(self, operation: str, *args: Any) -> Any:
        method = getattr(self._store, operation)
        timeout = self._config.store_timeout_seconds
        last_error: Exception | None = None

        for attempt in (1, 2):
            try:
                return await asyncio.wait_for(method(*args), timeout=timeout)
            except Exception as e:
                last_error = e
                if attempt == 1:
                    logger.warning("Session store %s failed (%s); retrying once", operation, type(e).__name__)

        logger.error("Session store %s failed after retry: %r", operation, last_error)
        raise SessionStoreUnavailableError(operation=operation) from last_error

    async def _load(self, session_id: str) -> Optional[SessionData]:
        """Read and parse a record without the inactivity check.

        Unparsable records are deleted and reported as missing.
        """
        raw = await self._call("get", self.session_key(session_id))
        if raw is None:
            return None
        try:
            return SessionData.from_json(raw, session_id)
        except ValueError as e:
            logger.warning("Discarding corrupt session %s: %s", short_id(session_id), e)
            await self._call("delete", self.session_key(session_id))
            return None

    async def _remove(self, session_id: str, user_id: Optional[str]) -> None:
        await self._call("delete", self.session_key(session_id))
        if user_id:
            await self._call("remove_from_set", self.user_sessions_key(user_id), session_id)

    async def _write(self, session: SessionData, ttl: int) -> None:
        await self._call("set", self.session_key(session.session_id), session.to_json(), ttl)

    def _is_idle(self, session: SessionData) -> bool:
        idle = (self._clock() - session.last_activity).total_seconds()
        return idle > self._config.max_inactivity_seconds

    # ── Lifecycle ───────────────────────────────────────

    async def create_session(self, data: SessionData, *, enforce_limit: bool = True) -> Optional[str]:
        """Store a new session and return its id.

        ``last_activity`` and ``created_at`` are set to now. When
        ``enforce_limit`` is true the user's oldest sessions beyond
        ``max_concurrent_sessions`` are evicted right after the insert.

        Returns:
            The session id, or ``None`` if the store is unavailable.
        """
        session_id = self.generate_session_id()
        now = self._clock()
        session = replace(data, session_id=session_id, last_activity=now, created_at=now)
        ttl = self._config.ttl_seconds
        user_key = self.user_sessions_key(session.user_id)

        try:
            await self._write(session, ttl)
            await self._call("add_to_set", user_key, session_id)
            await self._call("expire", user_key, ttl)
        except SessionStoreUnavailableError:
            return None

        get_auth_logger(__name__, session_id=session_id, user_id=session.user_id).info("Session created")

        if enforce_limit:
            await self.limit_concurrent_sessions(session.user_id, keep=session_id)
        return session_id

    async def get_session(self, session_id: str) -> Optional[SessionData]:
        """Return the live session, or ``None``.

        An idle session (``last_activity`` older than the inactivity
        window) is destroyed and removed from the user's set.
        """
        if not isinstance(session_id, str) or not session_id:
            return None
        try:
            session = await self._load(session_id)
            if session is None:
                return None
            if self._is_idle(session):
                logger.info("Session %s expired after inactivity", short_id(session_id))
                await self._remove(session_id, session.user_id)
                return None
            return session
        except SessionStoreUnavailableError:
            return None

    async def update_session_activity(
        self,
        session_id: str,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        mfa_verified: Optional[bool] = None,
        session_flags: Optional[tuple[str, ...]] = None,
    ) -> bool:
        """Touch ``last_activity`` and optionally update request metadata.

        The remaining absolute TTL is preserved; use ``extend_session`` to
        renew it.
        """
        session = await self.get_session(session_id)
        if session is None:
            return False

        changes: dict[str, Any] = {"last_activity": self._clock()}
        if ip_address is not None:
            changes["ip_address"] = ip_address
        if user_agent is not None:
            changes["user_agent"] = user_agent
        if mfa_verified is not None:
            changes["mfa_verified"] = mfa_verified
        if session_flags is not None:
            changes["session_flags"] = tuple(session_flags)

        try:
            remaining = await self._call("ttl", self.session_key(session_id))
            if remaining == -2:
                return False
            ttl = self._config.ttl_seconds if remaining == -1 else max(remaining, 1)
            await self._write(replace(session, **changes), ttl)
        except SessionStoreUnavailableError:
            return False
        return True

    async def extend_session(self, session_id: str) -> bool:
        """Renew the absolute TTL and touch activity."""
        if await self.get_session(session_id) is None:
            return False
        try:
            ttl = self._config.ttl_seconds
            if not await self._call("expire", self.session_key(session_id), ttl):
                return False
        except SessionStoreUnavailableError:
            return False
        return await self.update_session_activity(session_id)

    async def destroy_session(self, session_id: str) -> bool:
        """Delete a session and drop it from its user's set.

        Returns:
            True if a record was found and removed.
        """
        if not isinstance(session_id, str) or not session_id:
            return False
        try:
            session = await self._load(session_id)
            await self._remove(session_id, session.user_id if session else None)
        except SessionStoreUnavailableError:
            return False
        if session is not None:
            logger.info("Session %s destroyed", short_id(session_id))
        return session is not None

    async def destroy_all_user_sessions(self, user_id: str) -> int:
        """Delete every session of ``user_id``. Returns the number of ids removed."""
        user_key = self.user_sessions_key(user_id)
        try:
            session_ids = await self._call("set_members", user_key)
            if session_ids:
                await self._call("delete", *(self.session_key(sid) for sid in session_ids))
            await self._call("delete", user_key)
        except SessionStoreUnavailableError:
            return 0
        logger.info("Destroyed %d sessions for user %s", len(session_ids), user_id)
        return len(session_ids)

    # ── Queries ─────────────────────────────────────────

    async def get_active_sessions(self, user_id: str) -> list[SessionData]:
        """Live sessions of ``user_id``, most recently active first.

        Ids in the user's set whose record is gone or idle are pruned.
        """
        user_key = self.user_sessions_key(user_id)
        try:
            session_ids = await self._call("set_members", user_key)
        except SessionStoreUnavailableError:
            return []

        sessions: list[SessionData] = []
        for session_id in sorted(session_ids):
            session = await self.get_session(session_id)
            if session is not None:
                sessions.append(session)
                continue
            try:
                await self._call("remove_from_set", user_key, session_id)
            except SessionStoreUnavailableError:
                return []

        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    async def limit_concurrent_sessions(
        self,
        user_id: str,
        max_sessions: Optional[int] = None,
        *,
        keep: Optional[str] = None,
    ) -> list[str]:
        """Evict the least recently active sessions beyond ``max_sessions``.

        ``keep`` names a session that is never evicted (the one just created
        by ``create_session``), whatever its ``last_activity`` ties with.

        Returns:
            Ids of the evicted sessions.
        """
        limit = self._config.max_concurrent_sessions if max_sessions is None else max_sessions
        sessions = await self.get_active_sessions(user_id)
        if keep is not None:
            # stable: the kept session moves to the front, others keep recency order
            sessions.sort(key=lambda s: s.session_id != keep)
        if len(sessions) <= limit:
            return []

        evicted: list[str] = []
        for session in sessions[limit:]:
            if await self.destroy_session(session.session_id):
                evicted.append(session.session_id)

        if evicted:
            logger.info(
                "Evicted %d sessions for user %s (limit %d): %s",
                len(evicted),
                user_id,
                limit,
                ", ".join(short_id(sid) for sid in evicted),
            )
        return evicted

    def detect_drift(
        self,
        session: SessionData,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> list[str]:
        """Names of request attributes that differ from the session's (logged, not enforced)."""
        drift: list[str] = []
        if ip_address and session.ip_address and session.ip_address != ip_address:
            drift.append("ip_address")
            logger.warning(
                "IP address changed for session %s: %s -> %s",
                short_id(session.session_id),
                session.ip_address,
                ip_address,
            )
        if user_agent and session.user_agent and session.user_agent != user_agent:
            drift.append("user_agent")
            logger.warning("User agent changed for session %s", short_id(session.session_id))
        return drift

    async def is_session_valid(
        self,
        session_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """True while the session is live. IP or user-agent drift does not invalidate it."""
        session = await self.get_session(session_id)
        if session is None:
            return False
        self.detect_drift(session, ip_address, user_agent)
        return True

    async def flag_suspicious_session(self, session_id: str, reason: str) -> bool:
        """Append ``suspicious:{reason}:{iso timestamp}`` to the session flags."""
        session = await self.get_session(session_id)
        if session is None:
            return False

        flag = f"suspicious:{reason}:{_format_datetime(self._clock())}"
        flagged = await self.update_session_activity(session_id, session_flags=session.session_flags + (flag,))
        if flagged:
            get_auth_logger(__name__, session_id=session_id, user_id=session.user_id).warning(
                "Session flagged as suspicious: %s", reason
            )
        return flagged

    # ── Maintenance ─────────────────────────────────────

    async def cleanup_expired_sessions(self) -> CleanupResult:
        """Remove records the store will not expire on its own.

        Deletes session records that are idle, corrupt or have no TTL, and
        prunes dangling ids from every per-user set. Run periodically.
        """
        cleaned = 0
        errors = 0
        prefix = self.session_key("")

        try:
            keys = await self._call("scan_keys", f"{prefix}*")
        except SessionStoreUnavailableError:
            return CleanupResult(cleaned=0, errors=1)

        for key in keys:
            session_id = key[len(prefix):]
            try:
                ttl = await self._call("ttl", key)
                session = await self._load(session_id)
                if session is None:
                    # corrupt records are deleted by _load
                    if ttl != -2:
                        cleaned += 1
                    continue
                if ttl == -1 or self._is_idle(session):
                    await self._remove(session_id, session.user_id)
                    cleaned += 1
            except SessionStoreUnavailableError:
                errors += 1

        user_prefix = self.user_sessions_key("")
        try:
            user_keys = await self._call("scan_keys", f"{user_prefix}*")
        except SessionStoreUnavailableError:
            user_keys = []
            errors += 1

        for user_key in user_keys:
            try:
                for session_id in await self._call("set_members", user_key):
                    if not await self._call("exists", self.session_key(session_id)):
                        await self._call("remove_from_set", user_key, session_id)
            except SessionStoreUnavailableError:
                errors += 1

        logger.info("Session cleanup completed: %d cleaned, %d errors", cleaned, errors)
        return CleanupResult(cleaned=cleaned, errors=errors)

    async def get_session_stats(self) -> SessionStats:
        """Counts of stored sessions and users with sessions, plus mean session age."""
        try:
            session_keys = await self._call("scan_keys", f"{self.session_key('')}*")
            user_keys = await self._call("scan_keys", f"{self.user_sessions_key('')}*")
        except SessionStoreUnavailableError:
            return SessionStats()

        now = self._clock()
        ages: list[float] = []
        prefix = self.session_key("")
        for key in session_keys:
            try:
                session = await self._load(key[len(prefix):])
            except SessionStoreUnavailableError:
                continue
            if session is not None and session.created_at is not None:
                ages.append(max(0.0, (now - session.created_at).total_seconds()))

        return SessionStats(
            total_sessions=len(session_keys),
            active_users=len(user_keys),
            avg_session_duration_seconds=sum(ages) / len(ages) if ages else 0.0,
        )


__all__ = [
    "CleanupResult",
    "SessionData",
    "SessionManager",
    "SessionStats",
]
