"""Domain entities passed between repositories and services."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ChannelProvider(str, Enum):
    WHATSAPP_WEB = "whatsapp_web"
    META = "meta"


class MessageDirection(str, Enum):
    INCOMING = "incoming"
    OUTGOING = "outgoing"


@dataclass
class Channel:
    id: str
    company_id: str
    provider: str
    type: str = "whatsapp"
    name: Optional[str] = None
    is_active: bool = True
    default_agent_id: Optional[int] = None
    config: dict = field(default_factory=dict)


@dataclass
class Contact:
    id: str
    company_id: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class Conversation:
    id: str
    company_id: str
    channel_id: str
    contact_id: str
    intention_id: Optional[int] = None
    assigned_agent_id: Optional[int] = None
    workflow_state: Optional[dict] = None
    status: str = "open"
    last_message_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    id: str
    conversation_id: str
    direction: MessageDirection
    content: str
    provider_message_id: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Agent:
    id: int
    company_id: str
    name: str = ""
    is_alive: bool = True
    skills: list[str] = field(default_factory=list)
    intention_ids: list[int] = field(default_factory=list)


@dataclass
class Intention:
    id: int
    code: str
    description: str = ""
    instructions: str = ""
    flow_name: Optional[str] = None
