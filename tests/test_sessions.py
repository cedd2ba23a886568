"""Tests for advotecate_auth.sessions."""

from __future__ import annotations

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest
from advotecate_auth.config import SessionConfig
from advotecate_auth.sessions import (
    CleanupResult,
    InMemorySessionStore,
    SessionData,
    SessionManager,
    SessionStore,
)


def _data(user_id: str = "user-1", **kwargs) -> SessionData:
    return SessionData(
        user_id=user_id,
        email=f"{user_id}@example.org",
        role="donor",
        organizations=("org-1",),
        ip_address=kwargs.pop("ip_address", "10.0.0.1"),
        user_agent=kwargs.pop("user_agent", "Mozilla/5.0"),
        **kwargs,
    )


# ── Store ────────────────────────────────────────────────────────


class TestInMemorySessionStore:
    """InMemorySessionStore follows Redis TTL semantics."""

    def test_satisfies_protocol(self, store):
        assert isinstance(store, SessionStore)

    @pytest.mark.asyncio
    async def test_set_get_expire(self, store, clock):
        await store.set("k", "v", 10)
        assert await store.get("k") == "v"
        assert await store.ttl("k") == 10
        clock.advance(11)
        assert await store.get("k") is None
        assert await store.ttl("k") == -2

    @pytest.mark.asyncio
    async def test_expire_renews(self, store, clock):
        await store.set("k", "v", 10)
        clock.advance(8)
        assert await store.expire("k", 10)
        clock.advance(8)
        assert await store.exists("k")
        assert not await store.expire("missing", 10)

    @pytest.mark.asyncio
    async def test_sets(self, store):
        assert await store.add_to_set("s", "a", "b") == 2
        assert await store.add_to_set("s", "b") == 0
        assert await store.set_members("s") == {"a", "b"}
        assert await store.ttl("s") == -1
        assert await store.remove_from_set("s", "a", "b") == 2
        assert not await store.exists("s")

    @pytest.mark.asyncio
    async def test_scan_and_delete(self, store):
        await store.set("ns:session:1", "x", 10)
        await store.set("ns:session:2", "y", 10)
        await store.add_to_set("ns:user_sessions:u", "1")
        assert sorted(await store.scan_keys("ns:session:*")) == ["ns:session:1", "ns:session:2"]
        assert await store.delete("ns:session:1", "ns:session:missing") == 1


# ── Manager ──────────────────────────────────────────────────────


class TestSessionLifecycle:
    """Create / get / update / destroy."""

    @pytest.mark.asyncio
    async def test_round_trip(self, session_manager, clock):
        session_id = await session_manager.create_session(_data(mfa_verified=True))
        assert len(session_id) == 64
        int(session_id, 16)

        session = await session_manager.get_session(session_id)
        assert session is not None
        assert session.session_id == session_id
        assert session.user_id == "user-1"
        assert session.organizations == ("org-1",)
        assert session.mfa_verified is True
        assert session.last_activity == clock.now()

    @pytest.mark.asyncio
    async def test_wire_format(self, session_manager, store):
        session_id = await session_manager.create_session(_data())
        record = json.loads(await store.get(f"advotecate:session:{session_id}"))
        assert record["userId"] == "user-1"
        assert record["lastActivity"] == "2026-01-01T12:00:00Z"
        assert record["ipAddress"] == "10.0.0.1"
        assert record["sessionFlags"] == []
        assert "session_id" not in record

    @pytest.mark.asyncio
    async def test_tracked_in_user_set(self, session_manager, store):
        session_id = await session_manager.create_session(_data())
        assert await store.set_members("advotecate:user_sessions:user-1") == {session_id}

    @pytest.mark.asyncio
    async def test_inactivity_destroys_and_unlinks(self, session_manager, session_config, store, clock):
        session_id = await session_manager.create_session(_data())
        clock.advance(session_config.max_inactivity_seconds + 1)

        assert await session_manager.get_session(session_id) is None
        assert await store.get(f"advotecate:session:{session_id}") is None
        assert await store.set_members("advotecate:user_sessions:user-1") == set()

    @pytest.mark.asyncio
    async def test_activity_keeps_session_alive(self, session_manager, session_config, clock):
        session_id = await session_manager.create_session(_data())
        for _ in range(3):
            clock.advance(session_config.max_inactivity_seconds - 60)
            assert await session_manager.update_session_activity(session_id)
        assert await session_manager.get_session(session_id) is not None

    @pytest.mark.asyncio
    async def test_absolute_ttl_not_renewed_by_activity(self, session_manager, session_config, clock):
        session_id = await session_manager.create_session(_data())
        elapsed = 0
        while elapsed < session_config.ttl_seconds:
            clock.advance(3600)
            elapsed += 3600
            await session_manager.update_session_activity(session_id)
        assert await session_manager.get_session(session_id) is None

    @pytest.mark.asyncio
    async def test_extend_renews_absolute_ttl(self, session_manager, session_config, store, clock):
        session_id = await session_manager.create_session(_data())
        clock.advance(3600)
        assert await session_manager.extend_session(session_id)
        assert await store.ttl(f"advotecate:session:{session_id}") == session_config.ttl_seconds

    @pytest.mark.asyncio
    async def test_extend_missing(self, session_manager):
        assert not await session_manager.extend_session("0" * 64)

    @pytest.mark.asyncio
    async def test_update_fields(self, session_manager):
        session_id = await session_manager.create_session(_data())
        assert await session_manager.update_session_activity(session_id, ip_address="10.0.0.2", mfa_verified=True)
        session = await session_manager.get_session(session_id)
        assert session.ip_address == "10.0.0.2"
        assert session.mfa_verified is True

    @pytest.mark.asyncio
    async def test_destroy(self, session_manager, store):
        session_id = await session_manager.create_session(_data())
        assert await session_manager.destroy_session(session_id)
        assert await session_manager.get_session(session_id) is None
        assert await store.set_members("advotecate:user_sessions:user-1") == set()
        assert not await session_manager.destroy_session(session_id)

    @pytest.mark.asyncio
    async def test_destroy_all(self, session_manager):
        ids = [await session_manager.create_session(_data()) for _ in range(2)]
        other = await session_manager.create_session(_data("user-2"))
        assert await session_manager.destroy_all_user_sessions("user-1") == 2
        for session_id in ids:
            assert await session_manager.get_session(session_id) is None
        assert await session_manager.get_session(other) is not None

    @pytest.mark.asyncio
    async def test_corrupt_record_discarded(self, session_manager, store):
        await store.set("advotecate:session:bad", "{not json", 60)
        assert await session_manager.get_session("bad") is None
        assert await store.get("advotecate:session:bad") is None

    @pytest.mark.asyncio
    async def test_invalid_ids(self, session_manager):
        assert await session_manager.get_session("") is None
        assert await session_manager.get_session(None) is None
        assert not await session_manager.destroy_session("")

    @pytest.mark.asyncio
    async def test_custom_namespace(self, store, clock):
        manager = SessionManager(store, SessionConfig(namespace="test"), clock=clock.now)
        session_id = await manager.create_session(_data())
        assert await store.exists(f"test:session:{session_id}")
        assert await store.exists("test:user_sessions:user-1")


class TestConcurrentSessions:
    """LRU eviction."""

    @pytest.mark.asyncio
    async def test_create_evicts_least_recently_active(self, session_manager, session_config, clock):
        ids = []
        for _ in range(session_config.max_concurrent_sessions):
            ids.append(await session_manager.create_session(_data()))
            clock.advance(10)

        # touch the oldest so the second one becomes least recently used
        await session_manager.update_session_activity(ids[0])
        clock.advance(10)

        newest = await session_manager.create_session(_data())

        active = await session_manager.get_active_sessions("user-1")
        assert len(active) == session_config.max_concurrent_sessions
        assert ids[1] not in {s.session_id for s in active}
        assert {ids[0], ids[2], newest} <= {s.session_id for s in active}
        assert await session_manager.get_session(ids[1]) is None

    @pytest.mark.asyncio
    async def test_identical_timestamps_evict_exactly_one(self, session_manager, session_config):
        for _ in range(session_config.max_concurrent_sessions):
            await session_manager.create_session(_data(), enforce_limit=False)
        await session_manager.create_session(_data(), enforce_limit=False)

        evicted = await session_manager.limit_concurrent_sessions("user-1")

        assert len(evicted) == 1
        assert len(await session_manager.get_active_sessions("user-1")) == session_config.max_concurrent_sessions

    @pytest.mark.asyncio
    async def test_new_session_survives_timestamp_ties(self, session_manager, session_config):
        # the clock never advances: every session shares one last_activity
        for n in range(40):
            user_id = f"user-{n}"
            for _ in range(session_config.max_concurrent_sessions):
                await session_manager.create_session(_data(user_id))

            newest = await session_manager.create_session(_data(user_id))

            assert await session_manager.get_session(newest) is not None
            active = await session_manager.get_active_sessions(user_id)
            assert len(active) == session_config.max_concurrent_sessions
            assert newest in {s.session_id for s in active}

    @pytest.mark.asyncio
    async def test_keep_is_never_evicted(self, session_manager, clock):
        ids = []
        for _ in range(3):
            ids.append(await session_manager.create_session(_data(), enforce_limit=False))
            clock.advance(1)

        evicted = await session_manager.limit_concurrent_sessions("user-1", max_sessions=1, keep=ids[0])

        assert sorted(evicted) == sorted(ids[1:])
        assert await session_manager.get_session(ids[0]) is not None

    @pytest.mark.asyncio
    async def test_explicit_limit(self, session_manager, clock):
        for _ in range(3):
            await session_manager.create_session(_data(), enforce_limit=False)
            clock.advance(1)
        evicted = await session_manager.limit_concurrent_sessions("user-1", max_sessions=1)
        assert len(evicted) == 2
        assert len(await session_manager.get_active_sessions("user-1")) == 1

    @pytest.mark.asyncio
    async def test_under_limit_noop(self, session_manager):
        await session_manager.create_session(_data())
        assert await session_manager.limit_concurrent_sessions("user-1") == []

    @pytest.mark.asyncio
    async def test_active_sessions_newest_first(self, session_manager, clock):
        first = await session_manager.create_session(_data())
        clock.advance(5)
        second = await session_manager.create_session(_data())
        active = await session_manager.get_active_sessions("user-1")
        assert [s.session_id for s in active] == [second, first]

    @pytest.mark.asyncio
    async def test_active_sessions_prunes_dangling(self, session_manager, store):
        session_id = await session_manager.create_session(_data())
        await store.add_to_set("advotecate:user_sessions:user-1", "f" * 64)
        active = await session_manager.get_active_sessions("user-1")
        assert [s.session_id for s in active] == [session_id]
        assert await store.set_members("advotecate:user_sessions:user-1") == {session_id}


class TestSuspiciousActivity:
    """Drift detection and flagging."""

    @pytest.mark.asyncio
    async def test_ip_drift_logged_not_invalidating(self, session_manager, caplog):
        session_id = await session_manager.create_session(_data())
        with caplog.at_level(logging.WARNING, logger="advotecate_auth.sessions.manager"):
            assert await session_manager.is_session_valid(session_id, ip_address="192.168.1.1")
        assert any("IP address changed" in r.message for r in caplog.records)

    @pytest.mark.asyncio
    async def test_user_agent_drift(self, session_manager):
        session_id = await session_manager.create_session(_data())
        session = await session_manager.get_session(session_id)
        assert session_manager.detect_drift(session, "10.0.0.1", "curl/8.0") == ["user_agent"]
        assert session_manager.detect_drift(session, "10.0.0.1", "Mozilla/5.0") == []

    @pytest.mark.asyncio
    async def test_invalid_when_missing(self, session_manager):
        assert not await session_manager.is_session_valid("0" * 64)

    @pytest.mark.asyncio
    async def test_flag_appends(self, session_manager):
        session_id = await session_manager.create_session(_data())
        assert await session_manager.flag_suspicious_session(session_id, "ip_change")
        assert await session_manager.flag_suspicious_session(session_id, "velocity")
        session = await session_manager.get_session(session_id)
        assert session.session_flags == (
            "suspicious:ip_change:2026-01-01T12:00:00Z",
            "suspicious:velocity:2026-01-01T12:00:00Z",
        )

    @pytest.mark.asyncio
    async def test_flag_missing(self, session_manager):
        assert not await session_manager.flag_suspicious_session("0" * 64, "x")


class TestMaintenance:
    """cleanup_expired_sessions / get_session_stats."""

    @pytest.mark.asyncio
    async def test_cleanup_removes_idle(self, session_manager, session_config, store, clock):
        stale = await session_manager.create_session(_data())
        clock.advance(session_config.max_inactivity_seconds + 1)
        fresh = await session_manager.create_session(_data("user-2"))

        result = await session_manager.cleanup_expired_sessions()

        assert result == CleanupResult(cleaned=1, errors=0)
        assert not await store.exists(f"advotecate:session:{stale}")
        assert await store.exists(f"advotecate:session:{fresh}")
        assert not await store.exists("advotecate:user_sessions:user-1")

    @pytest.mark.asyncio
    async def test_cleanup_prunes_dangling_ids(self, session_manager, store):
        await store.add_to_set("advotecate:user_sessions:ghost", "f" * 64)
        await session_manager.cleanup_expired_sessions()
        assert await store.set_members("advotecate:user_sessions:ghost") == set()

    @pytest.mark.asyncio
    async def test_stats(self, session_manager, clock):
        await session_manager.create_session(_data())
        clock.advance(100)
        await session_manager.create_session(_data("user-2"))
        clock.advance(100)

        stats = await session_manager.get_session_stats()

        assert stats.total_sessions == 2
        assert stats.active_users == 2
        assert stats.avg_session_duration_seconds == pytest.approx(150.0)


class TestStoreFailures:
    """Timeouts and errors: one retry, then fail closed."""

    def _manager(self, store) -> SessionManager:
        return SessionManager(store, SessionConfig(store_timeout_seconds=0.05))

    @pytest.mark.asyncio
    async def test_single_failure_retried(self, clock):
        backing = InMemorySessionStore(clock=clock.time)
        manager = SessionManager(backing, SessionConfig(), clock=clock.now)
        session_id = await manager.create_session(_data())

        flaky = AsyncMock(spec=InMemorySessionStore)
        flaky.get.side_effect = [ConnectionError("reset"), await backing.get(f"advotecate:session:{session_id}")]
        manager = SessionManager(flaky, SessionConfig(), clock=clock.now)

        session = await manager.get_session(session_id)

        assert session is not None
        assert flaky.get.await_count == 2

    @pytest.mark.asyncio
    async def test_second_failure_fails_closed(self, caplog):
        broken = AsyncMock(spec=InMemorySessionStore)
        broken.get.side_effect = ConnectionError("down")
        manager = self._manager(broken)

        with caplog.at_level(logging.ERROR, logger="advotecate_auth.sessions.manager"):
            assert await manager.get_session("a" * 64) is None

        assert broken.get.await_count == 2
        assert any(r.levelno == logging.ERROR for r in caplog.records)

    @pytest.mark.asyncio
    async def test_timeout_is_not_found(self):
        async def hang(*args):
            await asyncio.sleep(10)

        slow = AsyncMock(spec=InMemorySessionStore)
        slow.get.side_effect = hang
        manager = self._manager(slow)

        assert await manager.get_session("a" * 64) is None
        assert slow.get.await_count == 2

    @pytest.mark.asyncio
    async def test_create_fails_closed(self):
        broken = AsyncMock(spec=InMemorySessionStore)
        broken.set.side_effect = ConnectionError("down")
        assert await self._manager(broken).create_session(_data()) is None

    @pytest.mark.asyncio
    async def test_queries_fail_empty(self):
        broken = AsyncMock(spec=InMemorySessionStore)
        for name in ("get", "set_members", "scan_keys", "delete"):
            getattr(broken, name).side_effect = ConnectionError("down")
        manager = self._manager(broken)

        assert await manager.get_active_sessions("user-1") == []
        assert await manager.destroy_all_user_sessions("user-1") == 0
        assert not await manager.is_session_valid("a" * 64)
        assert await manager.cleanup_expired_sessions() == CleanupResult(cleaned=0, errors=1)
        stats = await manager.get_session_stats()
        assert stats.total_sessions == 0
