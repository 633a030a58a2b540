"""Channel runtime: owns the registry of live channel sessions.

One session per channel id. Starts are idempotent and concurrent starts for
the same id share a single in-flight attempt. Teardown always removes the
session from the registry, even when the driver fails to shut down.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Optional

from switchboard.entities import Channel
from switchboard.errors import ChannelUnsupportedError, NotFoundError, TransientDriverError
from switchboard.logging_config import get_logger
from switchboard.repositories.base import ChannelRepository
from switchboard.services import events
from switchboard.services.auth_session_service import AuthSessionManager
from switchboard.services.drivers.base import (
    ChannelDriver,
    DriverEvent,
    DriverResponse,
    InboundMessage,
    OutboundMessage,
)
from switchboard.services.events import EventSink, RealtimeEvent

logger = get_logger("channel_runtime")

DriverFactory = Callable[..., ChannelDriver]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChannelSession:
    channel: Channel
    driver: ChannelDriver
    authenticated: bool = False
    last_activity: datetime = field(default_factory=_utcnow)
    started_at: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        self.last_activity = _utcnow()


@dataclass
class ChannelStatus:
    channel_id: str
    provider: str
    type: str
    is_active: bool
    is_connected: bool
    is_authenticated: bool
    last_activity: Optional[datetime] = None
    pending_messages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel_id": self.channel_id,
            "provider": self.provider,
            "type": self.type,
            "is_active": self.is_active,
            "is_connected": self.is_connected,
            "is_authenticated": self.is_authenticated,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "pending_messages": self.pending_messages,
        }


class ChannelRuntime:
    def __init__(
        self,
        channel_repository: ChannelRepository,
        auth_sessions: AuthSessionManager,
        event_sink: EventSink,
        driver_factory: DriverFactory,
        *,
        debounce_seconds: float = 1.0,
        restart_pause_seconds: float = 1.0,
        shutdown_timeout_seconds: float = 10.0,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel_repository = channel_repository
        self.auth_sessions = auth_sessions
        self.event_sink = event_sink
        self.driver_factory = driver_factory
        self.debounce_seconds = debounce_seconds
        self.restart_pause_seconds = restart_pause_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self._sleep = sleep_func
        self._sessions: dict[str, ChannelSession] = {}
        self._starting: dict[str, asyncio.Future] = {}
        self._router = None

    def attach_router(self, router) -> None:
        """Router receiving debounced inbound messages and sent outbound ones."""
        self._router = router

    def _emit(self, event: str, channel: Optional[Channel], channel_id: str, data: Optional[dict] = None) -> None:
        self.event_sink.emit(
            RealtimeEvent(
                event=event,
                channel_id=channel_id,
                company_id=channel.company_id if channel else None,
                data=data or {},
            )
        )

    async def initialize_active_channels(self) -> dict[str, Any]:
        started: list[str] = []
        failed: dict[str, str] = {}
        try:
            channels = await self.channel_repository.find_active_channels()
        except Exception as e:
            logger.error(f"Failed to load active channels: {e}")
            return {"started": started, "failed": failed}

        for channel in channels:
            try:
                await self.start_channel(channel.id)
                started.append(channel.id)
            except Exception as e:
                failed[channel.id] = str(e)
                logger.error(
                    "Channel failed to start",
                    extra={"context": {"channel_id": channel.id, "provider": channel.provider, "error": str(e)}},
                )
                self._emit(events.CHANNEL_ERROR, channel, channel.id, {"error": str(e), "phase": "startup"})

        logger.info(
            "Active channels initialized",
            extra={"context": {"started": len(started), "failed": len(failed)}},
        )
        return {"started": started, "failed": failed}

    async def start_channel(self, channel_id: str) -> ChannelSession:
        existing = self._sessions.get(channel_id)
        if existing is not None:
            return existing

        pending = self._starting.get(channel_id)
        if pending is None:
            pending = asyncio.ensure_future(self._start(channel_id))
            self._starting[channel_id] = pending
            pending.add_done_callback(partial(self._clear_starting, channel_id))
        return await asyncio.shield(pending)

    def _clear_starting(self, channel_id: str, future: asyncio.Future) -> None:
        if self._starting.get(channel_id) is future:
            del self._starting[channel_id]
        if not future.cancelled():
            future.exception()

    async def _start(self, channel_id: str) -> ChannelSession:
        channel = await self.channel_repository.find_by_id(channel_id)
        if channel is None:
            raise NotFoundError("channel", channel_id)

        driver = self.driver_factory(
            channel,
            on_message=partial(self._on_inbound, channel_id),
            on_event=partial(self._on_driver_event, channel_id),
            debounce_seconds=self.debounce_seconds,
        )
        payload = None
        if driver.requires_pairing:
            payload = await self.auth_sessions.load_session_payload(driver.provider, channel_id)

        # Also covers cancellation from shutdown() while a start is in flight.
        try:
            await driver.initialize(payload)
            authenticated = await driver.is_authenticated()
        except BaseException:
            await self._destroy_quietly(channel_id, driver)
            raise

        session = ChannelSession(channel=channel, driver=driver, authenticated=authenticated)
        self._sessions[channel_id] = session
        logger.info(
            "Channel started",
            extra={
                "context": {
                    "channel_id": channel_id,
                    "provider": driver.provider,
                    "authenticated": session.authenticated,
                }
            },
        )
        self._emit(events.CHANNEL_STARTED, channel, channel_id, {"provider": driver.provider})

        if driver.requires_pairing and not session.authenticated:
            if await self.auth_sessions.get_active_session_by_channel(channel_id) is None:
                await self.auth_sessions.create_session(channel_id, driver.provider)
        return session

    async def _destroy_quietly(self, channel_id: str, driver: ChannelDriver) -> None:
        try:
            await driver.destroy()
        except Exception as e:
            logger.warning(
                "Driver teardown failed, session released anyway",
                extra={"context": {"channel_id": channel_id, "error": str(e), "error_type": type(e).__name__}},
            )

    async def stop_channel(self, channel_id: str) -> bool:
        session = self._sessions.pop(channel_id, None)
        if session is None:
            return False
        await self._destroy_quietly(channel_id, session.driver)
        logger.info(f"Channel stopped: {channel_id}")
        self._emit(events.CHANNEL_STOPPED, session.channel, channel_id)
        return True

    async def restart_channel(self, channel_id: str) -> ChannelSession:
        await self.stop_channel(channel_id)
        await self._sleep(self.restart_pause_seconds)
        return await self.start_channel(channel_id)

    def is_channel_active(self, channel_id: str) -> bool:
        return channel_id in self._sessions

    def get_active_channel_ids(self) -> list[str]:
        return list(self._sessions)

    def get_session(self, channel_id: str) -> Optional[ChannelSession]:
        return self._sessions.get(channel_id)

    def _require_session(self, channel_id: str) -> ChannelSession:
        session = self._sessions.get(channel_id)
        if session is None:
            raise NotFoundError("active channel", channel_id)
        return session

    async def get_channel_status(self, channel_id: str) -> ChannelStatus:
        session = self._sessions.get(channel_id)
        if session is None:
            channel = await self.channel_repository.find_by_id(channel_id)
            if channel is None:
                raise NotFoundError("channel", channel_id)
            return ChannelStatus(
                channel_id=channel_id,
                provider=channel.provider,
                type=channel.type,
                is_active=False,
                is_connected=False,
                is_authenticated=False,
            )
        try:
            connected = await session.driver.test_connection()
            session.authenticated = await session.driver.is_authenticated()
        except Exception as e:
            logger.warning(f"Status probe failed for channel {channel_id}: {e}")
            connected = False
        return ChannelStatus(
            channel_id=channel_id,
            provider=session.driver.provider,
            type=session.channel.type,
            is_active=True,
            is_connected=connected,
            is_authenticated=session.authenticated,
            last_activity=session.last_activity,
            pending_messages=len(session.driver.pending_senders()),
        )

    async def emit_message(self, channel_id: str, message: OutboundMessage) -> DriverResponse:
        session = self._require_session(channel_id)
        try:
            response = await session.driver.send_message(message)
        except TransientDriverError as e:
            logger.warning(f"Send hit a busy session on {channel_id}, restarting once: {e}")
            session = await self.restart_channel(channel_id)
            response = await session.driver.send_message(message)

        if not response.success:
            logger.warning(
                "Outbound message not delivered",
                extra={"context": {"channel_id": channel_id, "to": message.to, "error": response.error}},
            )
            return response

        session.touch()
        if self._router is not None:
            try:
                await self._router.handle_outbound(session.channel, message, response)
            except Exception as e:
                logger.error(f"Outbound routing failed on {channel_id}: {e}")
        return response

    async def set_typing(self, channel_id: str, to: str, active: bool) -> None:
        """Best-effort typing indicator."""
        session = self._sessions.get(channel_id)
        if session is None:
            return
        try:
            await session.driver.send_typing(to, active)
        except Exception as e:
            logger.debug(f"Typing indicator failed on {channel_id}: {e}")

    async def generate_qr(self, channel_id: str) -> str:
        """Pairing code for the channel; "" means it is already authenticated."""
        session = self._sessions.get(channel_id) or await self.start_channel(channel_id)
        if not session.driver.requires_pairing:
            raise ChannelUnsupportedError(f"Channel {channel_id} does not use QR pairing")
        code = await session.driver.generate_qr()
        session.authenticated = await session.driver.is_authenticated()
        return code

    async def handle_webhook(self, channel_id: str, payload: dict) -> int:
        session = self._require_session(channel_id)
        session.touch()
        return await session.driver.handle_webhook(payload)

    async def _on_inbound(self, channel_id: str, message: InboundMessage) -> None:
        session = self._sessions.get(channel_id)
        if session is None:
            logger.info(f"Dropping message for stopped channel {channel_id}")
            return
        session.touch()
        if self._router is None:
            logger.warning(f"No router attached, dropping message on {channel_id}")
            return
        await self._router.handle_inbound(session.channel, message)

    async def _on_driver_event(self, channel_id: str, event: DriverEvent) -> None:
        session = self._sessions.get(channel_id)
        if session is None:
            return
        channel = session.channel
        provider = session.driver.provider

        if event.type == "qr":
            pending = await self.auth_sessions.get_active_session_by_channel(channel_id)
            if pending is None:
                await self.auth_sessions.create_session(channel_id, provider, qr_code=event.data.get("qr"))
            else:
                await self.auth_sessions.update_session(pending.id, qr_code=event.data.get("qr"))
        elif event.type in ("authenticated", "ready"):
            newly_authenticated = not session.authenticated
            session.authenticated = True
            pending = await self.auth_sessions.get_active_session_by_channel(channel_id)
            if pending is not None:
                await self.auth_sessions.complete_session(pending.id, {"event": event.type})
            if event.data.get("session"):
                await self.auth_sessions.save_session_payload(provider, channel_id, event.data["session"])
            if newly_authenticated:
                self._emit(events.CHANNEL_AUTHENTICATED, channel, channel_id, {"provider": provider})
        elif event.type == "auth_failure":
            session.authenticated = False
            pending = await self.auth_sessions.get_active_session_by_channel(channel_id)
            if pending is not None:
                await self.auth_sessions.fail_session(pending.id, event.data.get("message") or "auth_failure")
            await self.auth_sessions.delete_session_payload(provider, channel_id)
            self._emit(events.CHANNEL_ERROR, channel, channel_id, {"error": "auth_failure"})
        elif event.type == "disconnected":
            session.authenticated = False
            self._emit(events.CHANNEL_DISCONNECTED, channel, channel_id, {"reason": event.data.get("reason")})

    async def _stop_bounded(self, channel_id: str) -> None:
        await asyncio.wait_for(self.stop_channel(channel_id), timeout=self.shutdown_timeout_seconds)

    async def shutdown(self) -> dict[str, str]:
        """Stop every channel concurrently; returns errors keyed by channel id."""
        starting = list(self._starting.values())
        for pending in starting:
            pending.cancel()
        if starting:
            await asyncio.gather(*starting, return_exceptions=True)

        channel_ids = list(self._sessions)
        results = await asyncio.gather(
            *(self._stop_bounded(channel_id) for channel_id in channel_ids),
            return_exceptions=True,
        )
        errors = {}
        for channel_id, result in zip(channel_ids, results):
            if isinstance(result, BaseException):
                errors[channel_id] = repr(result)
                self._sessions.pop(channel_id, None)
        if errors:
            logger.warning("Channel shutdown finished with errors", extra={"context": {"errors": errors}})
        logger.info(f"Channel runtime shut down ({len(channel_ids)} channels)")
        return errors
