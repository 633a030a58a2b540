"""Dict-backed repositories for tests and local runs."""

import dataclasses
from typing import Any, Optional, Sequence

from switchboard.entities import Agent, Channel, Conversation, Intention, Message
from switchboard.repositories.base import (
    AgentRepository,
    ChannelRepository,
    ConversationRepository,
    MessageRepository,
    ParametersRepository,
)


def _apply(entity, fields: dict[str, Any]):
    known = {f.name for f in dataclasses.fields(entity)}
    unknown = set(fields) - known
    if unknown:
        raise ValueError(f"Unknown fields for {type(entity).__name__}: {sorted(unknown)}")
    for name, value in fields.items():
        setattr(entity, name, value)
    return entity


class InMemoryChannelRepository(ChannelRepository):
    def __init__(self, channels: Sequence[Channel] = ()):
        self.channels = {c.id: c for c in channels}

    async def find_by_id(self, channel_id: str) -> Optional[Channel]:
        return self.channels.get(channel_id)

    async def find_active_channels(self) -> list[Channel]:
        return [c for c in self.channels.values() if c.is_active]

    async def update(self, channel_id: str, **fields: Any) -> Optional[Channel]:
        channel = self.channels.get(channel_id)
        return _apply(channel, fields) if channel else None


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self, conversations: Sequence[Conversation] = ()):
        self.conversations = {c.id: c for c in conversations}

    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        return self.conversations.get(conversation_id)

    async def find_by_contact(self, channel_id: str, contact_id: str) -> Optional[Conversation]:
        matches = [
            c
            for c in self.conversations.values()
            if c.channel_id == channel_id and c.contact_id == contact_id and c.status == "open"
        ]
        return max(matches, key=lambda c: c.created_at) if matches else None

    async def create(self, conversation: Conversation) -> Conversation:
        self.conversations[conversation.id] = conversation
        return conversation

    async def update(self, conversation_id: str, **fields: Any) -> Optional[Conversation]:
        conversation = self.conversations.get(conversation_id)
        return _apply(conversation, fields) if conversation else None

    async def find_active_by_agent(self, agent_id: int) -> list[Conversation]:
        return [
            c for c in self.conversations.values() if c.assigned_agent_id == agent_id and c.status == "open"
        ]


class InMemoryMessageRepository(MessageRepository):
    def __init__(self, messages: Sequence[Message] = ()):
        self.messages: list[Message] = list(messages)

    async def create(self, message: Message) -> Message:
        self.messages.append(message)
        return message

    async def find_latest_by_conversation(self, conversation_id: str) -> Optional[Message]:
        found = await self.find_by_conversation(conversation_id, limit=1)
        return found[0] if found else None

    async def find_by_conversation(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_dir: str = "desc",
    ) -> list[Message]:
        rows = [m for m in self.messages if m.conversation_id == conversation_id]
        rows.sort(key=lambda m: getattr(m, sort_by), reverse=sort_dir == "desc")
        return rows[offset : offset + limit]


class InMemoryParametersRepository(ParametersRepository):
    def __init__(self, intentions: Sequence[Intention] = ()):
        self.intentions = {i.id: i for i in intentions}

    async def find_intentions(self, search: Optional[str] = None, limit: int = 100) -> list[Intention]:
        rows = sorted(self.intentions.values(), key=lambda i: i.id)
        if search:
            needle = search.lower()
            rows = [i for i in rows if needle in i.code.lower() or needle in i.description.lower()]
        return rows[:limit]

    async def get_intentions(self, ids: Sequence[int]) -> list[Intention]:
        return [self.intentions[i] for i in ids if i in self.intentions]


class InMemoryAgentRepository(AgentRepository):
    def __init__(self, agents: Sequence[Agent] = ()):
        self.agents = {a.id: a for a in agents}

    async def find_by_id(self, agent_id: int) -> Optional[Agent]:
        return self.agents.get(agent_id)

    async def find_candidates(
        self,
        company_id: str,
        *,
        intention_id: Optional[int] = None,
        skills: Optional[Sequence[str]] = None,
        alive_only: bool = True,
        limit: int = 50,
    ) -> list[Agent]:
        rows = []
        for agent in sorted(self.agents.values(), key=lambda a: a.id):
            if agent.company_id != company_id:
                continue
            if alive_only and not agent.is_alive:
                continue
            if intention_id is not None and intention_id not in agent.intention_ids:
                continue
            if skills and not set(skills).issubset(agent.skills):
                continue
            rows.append(agent)
        return rows[:limit]
