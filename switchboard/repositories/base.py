"""Narrow async interfaces over durable storage."""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from switchboard.entities import Agent, Channel, Conversation, Intention, Message


class ChannelRepository(ABC):
    @abstractmethod
    async def find_by_id(self, channel_id: str) -> Optional[Channel]: ...

    @abstractmethod
    async def find_active_channels(self) -> list[Channel]: ...

    @abstractmethod
    async def update(self, channel_id: str, **fields: Any) -> Optional[Channel]: ...


class ConversationRepository(ABC):
    @abstractmethod
    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]: ...

    @abstractmethod
    async def find_by_contact(self, channel_id: str, contact_id: str) -> Optional[Conversation]: ...

    @abstractmethod
    async def create(self, conversation: Conversation) -> Conversation: ...

    @abstractmethod
    async def update(self, conversation_id: str, **fields: Any) -> Optional[Conversation]:
        """Accepts workflow_state, intention_id, assigned_agent_id, status, last_message_at."""

    @abstractmethod
    async def find_active_by_agent(self, agent_id: int) -> list[Conversation]: ...


class MessageRepository(ABC):
    @abstractmethod
    async def create(self, message: Message) -> Message: ...

    @abstractmethod
    async def find_latest_by_conversation(self, conversation_id: str) -> Optional[Message]: ...

    @abstractmethod
    async def find_by_conversation(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_dir: str = "desc",
    ) -> list[Message]: ...


class ParametersRepository(ABC):
    @abstractmethod
    async def find_intentions(self, search: Optional[str] = None, limit: int = 100) -> list[Intention]: ...

    @abstractmethod
    async def get_intentions(self, ids: Sequence[int]) -> list[Intention]: ...

    async def get_intention(self, intention_id: int) -> Optional[Intention]:
        found = await self.get_intentions([intention_id])
        return found[0] if found else None


class AgentRepository(ABC):
    @abstractmethod
    async def find_by_id(self, agent_id: int) -> Optional[Agent]: ...

    @abstractmethod
    async def find_candidates(
        self,
        company_id: str,
        *,
        intention_id: Optional[int] = None,
        skills: Optional[Sequence[str]] = None,
        alive_only: bool = True,
        limit: int = 50,
    ) -> list[Agent]: ...
