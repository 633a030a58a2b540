"""Pairing session lifecycle for channels that need manual authentication.

pending -> completed | failed | expired; expired and finished sessions are
dropped after a grace period. Sessions live in memory and are mirrored to the
cache so a restarted process can still answer status queries.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from switchboard.logging_config import get_logger
from switchboard.services import state_machine
from switchboard.services.cache_store import CacheStore, get_json, set_json
from switchboard.services.qr_service import QRCodeStorage
from switchboard.services.scheduler import ScheduledTask
from switchboard.services.state_machine import AuthSessionStatus

logger = get_logger("auth_session_service")

SESSION_PAYLOAD_TTL_SECONDS = 30 * 24 * 3600


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthSession:
    id: str
    channel_id: str
    provider: str
    status: AuthSessionStatus
    expires_at: datetime
    created_at: datetime
    qr_code: Optional[str] = None
    qr_code_url: Optional[str] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel_id": self.channel_id,
            "provider": self.provider,
            "status": self.status.value,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "qr_code": self.qr_code,
            "qr_code_url": self.qr_code_url,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthSession":
        completed_at = data.get("completed_at")
        return cls(
            id=data["id"],
            channel_id=data["channel_id"],
            provider=data["provider"],
            status=AuthSessionStatus(data["status"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            qr_code=data.get("qr_code"),
            qr_code_url=data.get("qr_code_url"),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            error=data.get("error"),
            metadata=data.get("metadata") or {},
        )


class AuthSessionManager:
    def __init__(
        self,
        cache: CacheStore,
        *,
        ttl_minutes: float = 15,
        grace_seconds: float = 300,
        qr_storage: Optional[QRCodeStorage] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.cache = cache
        self.ttl_minutes = ttl_minutes
        self.grace_seconds = grace_seconds
        self.qr_storage = qr_storage
        self._clock = clock
        self._sessions: dict[str, AuthSession] = {}
        self._timers: dict[str, list[ScheduledTask]] = {}

    @staticmethod
    def session_key(session_id: str) -> str:
        return f"auth:session:{session_id}"

    @staticmethod
    def payload_key(provider: str, channel_id: str) -> str:
        return f"{provider}:session:{channel_id}"

    async def create_session(
        self,
        channel_id: str,
        provider: str,
        qr_code: Optional[str] = None,
        qr_code_url: Optional[str] = None,
        ttl_minutes: Optional[float] = None,
    ) -> AuthSession:
        previous = await self.get_active_session_by_channel(channel_id)
        if previous is not None:
            logger.info(f"Superseding pending auth session {previous.id} for channel {channel_id}")
            await self._expire(previous.id)

        ttl = timedelta(minutes=ttl_minutes if ttl_minutes is not None else self.ttl_minutes)
        now = self._clock()
        session = AuthSession(
            id=str(uuid.uuid4()),
            channel_id=channel_id,
            provider=provider,
            status=AuthSessionStatus.PENDING,
            expires_at=now + ttl,
            created_at=now,
            qr_code=qr_code,
            qr_code_url=qr_code_url,
        )
        self._sessions[session.id] = session
        self._schedule(session)
        await self._mirror(session)
        logger.info(
            "Auth session created",
            extra={"context": {"session_id": session.id, "channel_id": channel_id, "provider": provider}},
        )
        return session

    def _schedule(self, session: AuthSession) -> None:
        self._cancel_timers(session.id)
        remaining = max((session.expires_at - self._clock()).total_seconds(), 0.0)
        timers = []
        if session.status == AuthSessionStatus.PENDING:
            timers.append(ScheduledTask(remaining, lambda: self._expire(session.id), name=f"auth-expire:{session.id}"))
            delete_after = remaining + self.grace_seconds
        else:
            delete_after = self.grace_seconds
        timers.append(ScheduledTask(delete_after, lambda: self._delete(session.id), name=f"auth-delete:{session.id}"))
        self._timers[session.id] = timers

    def _cancel_timers(self, session_id: str) -> None:
        for timer in self._timers.pop(session_id, []):
            timer.cancel()

    async def get_session(self, session_id: str) -> Optional[AuthSession]:
        session = self._sessions.get(session_id)
        if session is None:
            session = await self._restore(session_id)
            if session is None:
                return None
        if session.status == AuthSessionStatus.PENDING and session.expires_at <= self._clock():
            await self._expire(session_id)
        return session

    async def _restore(self, session_id: str) -> Optional[AuthSession]:
        data = await get_json(self.cache, self.session_key(session_id))
        if not data:
            return None
        try:
            session = AuthSession.from_dict(data)
        except (KeyError, ValueError) as e:
            logger.warning(f"Discarding unreadable auth session {session_id}: {e}")
            return None
        self._sessions[session.id] = session
        self._schedule(session)
        return session

    async def get_active_session_by_channel(self, channel_id: str) -> Optional[AuthSession]:
        active = None
        for session in list(self._sessions.values()):
            if session.channel_id != channel_id or session.status != AuthSessionStatus.PENDING:
                continue
            if session.expires_at <= self._clock():
                await self._expire(session.id)
                continue
            active = session
        return active

    async def update_session(
        self,
        session_id: str,
        *,
        qr_code: Optional[str] = None,
        qr_code_url: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Optional[AuthSession]:
        session = await self.get_session(session_id)
        if session is None or session.status != AuthSessionStatus.PENDING:
            return None
        if qr_code is not None:
            session.qr_code = qr_code
        if qr_code_url is not None:
            if self.qr_storage and session.qr_code_url and session.qr_code_url != qr_code_url:
                self.qr_storage.remove(session.qr_code_url)
            session.qr_code_url = qr_code_url
        if metadata:
            session.metadata.update(metadata)
        await self._mirror(session)
        return session

    async def complete_session(self, session_id: str, metadata: Optional[dict] = None) -> Optional[AuthSession]:
        session = await self.get_session(session_id)
        if session is None:
            return None
        session.status = state_machine.complete(session.status)
        session.completed_at = self._clock()
        if metadata:
            session.metadata.update(metadata)
        self._finish(session)
        await self._mirror(session)
        logger.info(
            "Auth session completed",
            extra={"context": {"session_id": session.id, "channel_id": session.channel_id}},
        )
        return session

    async def fail_session(self, session_id: str, error: str) -> Optional[AuthSession]:
        session = await self.get_session(session_id)
        if session is None:
            return None
        session.status = state_machine.fail(session.status)
        session.error = error
        self._finish(session)
        await self._mirror(session)
        logger.warning(
            "Auth session failed",
            extra={"context": {"session_id": session.id, "channel_id": session.channel_id, "error": error}},
        )
        return session

    def _finish(self, session: AuthSession) -> None:
        if self.qr_storage and session.qr_code_url:
            self.qr_storage.remove(session.qr_code_url)
        self._schedule(session)

    async def _expire(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None or session.status != AuthSessionStatus.PENDING:
            return
        session.status = state_machine.expire(session.status)
        self._finish(session)
        await self._mirror(session)
        logger.info(f"Auth session expired: {session_id}")

    async def _delete(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        self._cancel_timers(session_id)
        if session is not None and self.qr_storage and session.qr_code_url:
            self.qr_storage.remove(session.qr_code_url)
        try:
            await self.cache.delete(self.session_key(session_id))
        except Exception as e:
            logger.warning(f"Failed to drop mirrored auth session {session_id}: {e}")

    async def _mirror(self, session: AuthSession) -> None:
        remaining = (session.expires_at - self._clock()).total_seconds()
        await set_json(
            self.cache,
            self.session_key(session.id),
            session.to_dict(),
            ttl_seconds=max(remaining, 0) + self.grace_seconds,
        )

    async def save_session_payload(self, provider: str, channel_id: str, payload: dict) -> bool:
        """Persist resumable driver state. Advisory: failures are logged only."""
        return await set_json(
            self.cache,
            self.payload_key(provider, channel_id),
            payload,
            ttl_seconds=SESSION_PAYLOAD_TTL_SECONDS,
        )

    async def load_session_payload(self, provider: str, channel_id: str) -> Optional[dict]:
        return await get_json(self.cache, self.payload_key(provider, channel_id))

    async def delete_session_payload(self, provider: str, channel_id: str) -> None:
        try:
            await self.cache.delete(self.payload_key(provider, channel_id))
        except Exception as e:
            logger.warning(f"Failed to delete session payload for channel {channel_id}: {e}")

    def pending_timer_count(self, session_id: str) -> int:
        return sum(1 for timer in self._timers.get(session_id, []) if not timer.done)

    def get_stats(self) -> dict:
        by_status = {status.value: 0 for status in AuthSessionStatus}
        for session in self._sessions.values():
            by_status[session.status.value] += 1
        return {"total": len(self._sessions), "by_status": by_status}

    def shutdown(self) -> None:
        for session_id in list(self._timers):
            self._cancel_timers(session_id)
