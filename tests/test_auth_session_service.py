import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from switchboard.services.auth_session_service import AuthSessionManager
from switchboard.services.state_machine import AuthSessionStatus, InvalidTransitionError


class MovableNow:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def now():
    return MovableNow()


class TestCreateSession:
    def test_new_session_is_pending_and_mirrored(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            session = await manager.create_session("ch-1", "whatsapp_web", qr_code="2@abc")
            mirrored = await cache.exists(manager.session_key(session.id))
            timers = manager.pending_timer_count(session.id)
            manager.shutdown()
            return session, mirrored, timers

        session, mirrored, timers = asyncio.run(run())

        assert session.status == AuthSessionStatus.PENDING
        assert session.expires_at == now.now + timedelta(minutes=15)
        assert mirrored is True
        assert timers == 2

    def test_new_session_supersedes_pending_one(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            first = await manager.create_session("ch-1", "whatsapp_web")
            second = await manager.create_session("ch-1", "whatsapp_web")
            active = await manager.get_active_session_by_channel("ch-1")
            manager.shutdown()
            return first, second, active

        first, second, active = asyncio.run(run())

        assert first.status == AuthSessionStatus.EXPIRED
        assert active.id == second.id


class TestTransitions:
    def test_complete_cancels_expiry_timer(self, cache, now):
        qr_storage = Mock()
        manager = AuthSessionManager(cache, qr_storage=qr_storage, clock=now)

        async def run():
            session = await manager.create_session(
                "ch-1", "whatsapp_web", qr_code="2@abc", qr_code_url="/public/qr-images/qr-1.svg"
            )
            expire_timer = manager._timers[session.id][0]
            completed = await manager.complete_session(session.id, {"event": "ready"})
            await asyncio.sleep(0)
            timers = manager.pending_timer_count(session.id)
            manager.shutdown()
            return completed, expire_timer, timers

        completed, expire_timer, timers = asyncio.run(run())

        assert completed.status == AuthSessionStatus.COMPLETED
        assert completed.completed_at == now.now
        assert completed.metadata == {"event": "ready"}
        assert expire_timer.cancelled is True
        assert timers == 1
        qr_storage.remove.assert_called_once_with("/public/qr-images/qr-1.svg")

    def test_complete_twice_is_rejected(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            session = await manager.create_session("ch-1", "whatsapp_web")
            await manager.complete_session(session.id)
            try:
                await manager.complete_session(session.id)
            finally:
                manager.shutdown()

        with pytest.raises(InvalidTransitionError):
            asyncio.run(run())

    def test_fail_records_error(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            session = await manager.create_session("ch-1", "whatsapp_web")
            failed = await manager.fail_session(session.id, "auth_failure")
            manager.shutdown()
            return failed

        failed = asyncio.run(run())

        assert failed.status == AuthSessionStatus.FAILED
        assert failed.error == "auth_failure"

    def test_unknown_session(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        assert asyncio.run(manager.complete_session("missing")) is None


class TestExpiry:
    def test_expired_session_is_expired_on_read(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            session = await manager.create_session("ch-1", "whatsapp_web")
            now.advance(minutes=16)
            read = await manager.get_session(session.id)
            active = await manager.get_active_session_by_channel("ch-1")
            manager.shutdown()
            return read, active

        read, active = asyncio.run(run())

        assert read.status == AuthSessionStatus.EXPIRED
        assert active is None

    def test_timer_expires_and_then_deletes(self, cache):
        manager = AuthSessionManager(cache, ttl_minutes=0.0005, grace_seconds=0.05)

        async def run():
            session = await manager.create_session("ch-1", "whatsapp_web")
            await asyncio.sleep(0.04)
            status_after_ttl = manager._sessions[session.id].status
            await asyncio.sleep(0.1)
            gone = session.id not in manager._sessions
            mirrored = await cache.exists(manager.session_key(session.id))
            return status_after_ttl, gone, mirrored

        status_after_ttl, gone, mirrored = asyncio.run(run())

        assert status_after_ttl == AuthSessionStatus.EXPIRED
        assert gone is True
        assert mirrored is False


class TestPersistence:
    def test_session_restored_from_cache(self, cache, now):
        first = AuthSessionManager(cache, clock=now)
        second = AuthSessionManager(cache, clock=now)

        async def run():
            session = await first.create_session("ch-1", "whatsapp_web", qr_code="2@abc")
            first.shutdown()
            restored = await second.get_session(session.id)
            second.shutdown()
            return session, restored

        session, restored = asyncio.run(run())

        assert restored.id == session.id
        assert restored.qr_code == "2@abc"
        assert restored.status == AuthSessionStatus.PENDING

    def test_session_payload_round_trip(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            await manager.save_session_payload("whatsapp_web", "ch-1", {"token": "t"})
            loaded = await manager.load_session_payload("whatsapp_web", "ch-1")
            await manager.delete_session_payload("whatsapp_web", "ch-1")
            return loaded, await manager.load_session_payload("whatsapp_web", "ch-1")

        assert asyncio.run(run()) == ({"token": "t"}, None)

    def test_stats_by_status(self, cache, now):
        manager = AuthSessionManager(cache, clock=now)

        async def run():
            a = await manager.create_session("ch-1", "whatsapp_web")
            await manager.create_session("ch-2", "whatsapp_web")
            await manager.complete_session(a.id)
            stats = manager.get_stats()
            manager.shutdown()
            return stats

        stats = asyncio.run(run())

        assert stats["total"] == 2
        assert stats["by_status"]["completed"] == 1
        assert stats["by_status"]["pending"] == 1
