"""Real-time event sink.

Events are emitted fire-and-forget: `emit` never blocks the pipeline and
subscriber failures are logged, never propagated.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from switchboard.logging_config import get_logger

logger = get_logger("events")

CHANNEL_STARTED = "channel.started"
CHANNEL_STOPPED = "channel.stopped"
CHANNEL_ERROR = "channel.error"
CHANNEL_AUTHENTICATED = "channel.authenticated"
CHANNEL_DISCONNECTED = "channel.disconnected"
MESSAGE_RECEIVED = "message.received"
MESSAGE_SENT = "message.sent"
INTENT_DETECTED = "intent.detected"
AGENT_ASSIGNED = "agent.assigned"


@dataclass
class RealtimeEvent:
    event: str
    channel_id: Optional[str] = None
    company_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event,
            "channelId": self.channel_id,
            "companyId": self.company_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


class EventSink(ABC):
    @abstractmethod
    def emit(self, event: RealtimeEvent) -> None:
        """Publish an event. Must not raise."""


class EventBus(EventSink):
    """In-process fan-out to subscriber queues and callbacks."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._queues: dict[int, tuple[asyncio.Queue, Optional[str]]] = {}
        self._callbacks: list[Callable[[RealtimeEvent], None]] = []

    def subscribe(self, company_id: Optional[str] = None) -> asyncio.Queue:
        """Queue receiving events for one tenant (all tenants when None)."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._queues[id(queue)] = (queue, company_id)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._queues.pop(id(queue), None)

    def add_listener(self, callback: Callable[[RealtimeEvent], None]) -> None:
        self._callbacks.append(callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._queues) + len(self._callbacks)

    def emit(self, event: RealtimeEvent) -> None:
        logger.debug(f"Event {event.event} channel={event.channel_id}")
        for queue, company_id in list(self._queues.values()):
            if company_id is not None and company_id != event.company_id:
                continue
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(f"Dropping {event.event} for slow subscriber (company={company_id})")
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception as exc:
                logger.warning(f"Event listener failed for {event.event}: {exc}")


class NullEventSink(EventSink):
    def emit(self, event: RealtimeEvent) -> None:
        return None
