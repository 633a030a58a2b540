import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from switchboard.entities import Channel, Contact
from switchboard.errors import ChannelUnsupportedError
from switchboard.logging_config import bind_logger
from switchboard.services.scheduler import KeyedDebouncer


@dataclass
class InboundMessage:
    provider_message_id: str
    sender_id: str
    text: str
    contact: Contact
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OutboundMessage:
    to: str
    text: str
    conversation_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DriverResponse:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


# Driver lifecycle notifications: qr, authenticated, ready, auth_failure, disconnected
@dataclass
class DriverEvent:
    type: str
    data: dict[str, Any] = field(default_factory=dict)


MessageHandler = Callable[[InboundMessage], Awaitable[None]]
EventHandler = Callable[[DriverEvent], Awaitable[None]]
WebhookItem = Union[InboundMessage, DriverEvent]


class ChannelDriver(ABC):
    """One live connection to a messaging provider for a single channel.

    Inbound messages are coalesced per sender: a burst from one sender inside
    the debounce window only forwards its last message.
    """

    provider: str = ""
    requires_pairing: bool = False

    def __init__(
        self,
        channel: Channel,
        *,
        on_message: Optional[MessageHandler] = None,
        on_event: Optional[EventHandler] = None,
        debounce_seconds: float = 1.0,
        sleep_func: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel = channel
        self.on_message = on_message
        self.on_event = on_event
        self.debounce_seconds = debounce_seconds
        self._debouncer = KeyedDebouncer(sleep_func=sleep_func)
        self.log = bind_logger("drivers", channel_id=channel.id, company_id=channel.company_id)

    @property
    def channel_id(self) -> str:
        return self.channel.id

    async def initialize(self, session_payload: Optional[dict] = None) -> None:
        """Open the provider session, resuming from a stored payload if given."""

    @abstractmethod
    async def send_message(self, message: OutboundMessage) -> DriverResponse: ...

    @abstractmethod
    async def is_authenticated(self) -> bool: ...

    async def is_connected(self) -> bool:
        return await self.is_authenticated()

    async def generate_qr(self, force: bool = False) -> str:
        raise ChannelUnsupportedError(f"Provider {self.provider} does not support QR pairing")

    async def send_typing(self, to: str, active: bool) -> None:
        return None

    @abstractmethod
    async def validate_credentials(self) -> bool: ...

    async def test_connection(self) -> bool:
        return await self.is_connected()

    @abstractmethod
    def parse_webhook(self, payload: dict) -> list[WebhookItem]: ...

    async def handle_webhook(self, payload: dict) -> int:
        """Dispatch a provider webhook; returns the number of messages accepted."""
        accepted = 0
        for item in self.parse_webhook(payload):
            if isinstance(item, InboundMessage):
                self.receive(item)
                accepted += 1
            else:
                await self.emit_event(item)
        return accepted

    def receive(self, message: InboundMessage) -> None:
        self._debouncer.debounce(message.sender_id, self.debounce_seconds, lambda: self._dispatch(message))

    async def _dispatch(self, message: InboundMessage) -> None:
        if self.on_message is None:
            return
        try:
            await self.on_message(message)
        except Exception as e:
            self.log.error(
                "Inbound message handler failed", context={"sender_id": message.sender_id, "error": str(e)}
            )

    async def emit_event(self, event: DriverEvent) -> None:
        if self.on_event is None:
            return
        try:
            await self.on_event(event)
        except Exception as e:
            self.log.error(f"Driver event handler failed for {event.type}: {e}")

    def pending_senders(self) -> list:
        return self._debouncer.pending_keys()

    async def destroy(self) -> None:
        """Release provider resources. May raise; callers decide whether to swallow."""
        self._debouncer.cancel_all()
