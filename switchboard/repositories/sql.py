"""SQLAlchemy-backed repositories.

Each call opens its own session and runs on a worker thread so the event
loop is never blocked by the database driver.
"""

import asyncio
import uuid
from typing import Any, Callable, Optional, Sequence, TypeVar

from sqlalchemy import asc, desc
from sqlalchemy.orm import Session

from switchboard import models
from switchboard.entities import Agent, Channel, Conversation, Intention, Message, MessageDirection
from switchboard.repositories.base import (
    AgentRepository,
    ChannelRepository,
    ConversationRepository,
    MessageRepository,
    ParametersRepository,
)

T = TypeVar("T")


def _uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _channel(row: models.Channel) -> Channel:
    return Channel(
        id=str(row.id),
        company_id=str(row.company_id),
        provider=row.provider,
        type=row.type,
        name=row.name,
        is_active=bool(row.is_active),
        default_agent_id=row.default_agent_id,
        config=dict(row.config or {}),
    )


def _conversation(row: models.Conversation) -> Conversation:
    return Conversation(
        id=str(row.id),
        company_id=str(row.company_id),
        channel_id=str(row.channel_id),
        contact_id=row.contact_id,
        intention_id=row.intention_id,
        assigned_agent_id=row.assigned_agent_id,
        workflow_state=row.workflow_state,
        status=row.status,
        last_message_at=row.last_message_at,
        created_at=row.created_at,
    )


def _message(row: models.Message) -> Message:
    return Message(
        id=str(row.id),
        conversation_id=str(row.conversation_id),
        direction=MessageDirection(row.direction),
        content=row.content,
        provider_message_id=row.provider_message_id,
        metadata=dict(row.message_metadata or {}),
        created_at=row.created_at,
    )


def _agent(row: models.Agent) -> Agent:
    return Agent(
        id=row.id,
        company_id=str(row.company_id),
        name=row.name or "",
        is_alive=bool(row.is_alive),
        skills=list(row.skills or []),
        intention_ids=list(row.intention_ids or []),
    )


def _intention(row: models.Intention) -> Intention:
    return Intention(
        id=row.id,
        code=row.code,
        description=row.description or "",
        instructions=row.instructions or "",
        flow_name=row.flow_name,
    )


class _SqlRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    async def _run(self, fn: Callable[[Session], T]) -> T:
        def work() -> T:
            db = self.session_factory()
            try:
                result = fn(db)
                db.commit()
                return result
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

        return await asyncio.to_thread(work)


class SqlChannelRepository(_SqlRepository, ChannelRepository):
    async def find_by_id(self, channel_id: str) -> Optional[Channel]:
        key = _uuid(channel_id)
        if key is None:
            return None

        def query(db: Session):
            row = db.query(models.Channel).filter(models.Channel.id == key).first()
            return _channel(row) if row else None

        return await self._run(query)

    async def find_active_channels(self) -> list[Channel]:
        def query(db: Session):
            rows = db.query(models.Channel).filter(models.Channel.is_active.is_(True)).all()
            return [_channel(row) for row in rows]

        return await self._run(query)

    async def update(self, channel_id: str, **fields: Any) -> Optional[Channel]:
        key = _uuid(channel_id)
        if key is None:
            return None

        def query(db: Session):
            row = db.query(models.Channel).filter(models.Channel.id == key).first()
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            db.flush()
            return _channel(row)

        return await self._run(query)


class SqlConversationRepository(_SqlRepository, ConversationRepository):
    async def find_by_id(self, conversation_id: str) -> Optional[Conversation]:
        key = _uuid(conversation_id)
        if key is None:
            return None

        def query(db: Session):
            row = db.query(models.Conversation).filter(models.Conversation.id == key).first()
            return _conversation(row) if row else None

        return await self._run(query)

    async def find_by_contact(self, channel_id: str, contact_id: str) -> Optional[Conversation]:
        key = _uuid(channel_id)
        if key is None:
            return None

        def query(db: Session):
            row = (
                db.query(models.Conversation)
                .filter(
                    models.Conversation.channel_id == key,
                    models.Conversation.contact_id == contact_id,
                    models.Conversation.status == "open",
                )
                .order_by(desc(models.Conversation.created_at))
                .first()
            )
            return _conversation(row) if row else None

        return await self._run(query)

    async def create(self, conversation: Conversation) -> Conversation:
        def query(db: Session):
            row = models.Conversation(
                id=_uuid(conversation.id),
                company_id=_uuid(conversation.company_id),
                channel_id=_uuid(conversation.channel_id),
                contact_id=conversation.contact_id,
                intention_id=conversation.intention_id,
                assigned_agent_id=conversation.assigned_agent_id,
                workflow_state=conversation.workflow_state,
                status=conversation.status,
                last_message_at=conversation.last_message_at,
                created_at=conversation.created_at,
            )
            db.add(row)
            db.flush()
            return _conversation(row)

        return await self._run(query)

    async def update(self, conversation_id: str, **fields: Any) -> Optional[Conversation]:
        key = _uuid(conversation_id)
        if key is None:
            return None

        def query(db: Session):
            row = db.query(models.Conversation).filter(models.Conversation.id == key).first()
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            db.flush()
            return _conversation(row)

        return await self._run(query)

    async def find_active_by_agent(self, agent_id: int) -> list[Conversation]:
        def query(db: Session):
            rows = (
                db.query(models.Conversation)
                .filter(
                    models.Conversation.assigned_agent_id == agent_id,
                    models.Conversation.status == "open",
                )
                .all()
            )
            return [_conversation(row) for row in rows]

        return await self._run(query)


class SqlMessageRepository(_SqlRepository, MessageRepository):
    SORTABLE = {"created_at", "direction"}

    async def create(self, message: Message) -> Message:
        def query(db: Session):
            row = models.Message(
                id=_uuid(message.id),
                conversation_id=_uuid(message.conversation_id),
                direction=message.direction.value,
                content=message.content,
                provider_message_id=message.provider_message_id,
                message_metadata=message.metadata,
                created_at=message.created_at,
            )
            db.add(row)
            db.flush()
            return _message(row)

        return await self._run(query)

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
        key = _uuid(conversation_id)
        if key is None:
            return []
        column = getattr(models.Message, sort_by if sort_by in self.SORTABLE else "created_at")
        order = desc(column) if sort_dir == "desc" else asc(column)

        def query(db: Session):
            rows = (
                db.query(models.Message)
                .filter(models.Message.conversation_id == key)
                .order_by(order)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return [_message(row) for row in rows]

        return await self._run(query)


class SqlParametersRepository(_SqlRepository, ParametersRepository):
    async def find_intentions(self, search: Optional[str] = None, limit: int = 100) -> list[Intention]:
        def query(db: Session):
            q = db.query(models.Intention)
            if search:
                pattern = f"%{search}%"
                q = q.filter(models.Intention.code.ilike(pattern) | models.Intention.description.ilike(pattern))
            rows = q.order_by(asc(models.Intention.id)).limit(limit).all()
            return [_intention(row) for row in rows]

        return await self._run(query)

    async def get_intentions(self, ids: Sequence[int]) -> list[Intention]:
        if not ids:
            return []

        def query(db: Session):
            rows = db.query(models.Intention).filter(models.Intention.id.in_(list(ids))).all()
            return [_intention(row) for row in rows]

        return await self._run(query)


class SqlAgentRepository(_SqlRepository, AgentRepository):
    async def find_by_id(self, agent_id: int) -> Optional[Agent]:
        def query(db: Session):
            row = db.query(models.Agent).filter(models.Agent.id == agent_id).first()
            return _agent(row) if row else None

        return await self._run(query)

    async def find_candidates(
        self,
        company_id: str,
        *,
        intention_id: Optional[int] = None,
        skills: Optional[Sequence[str]] = None,
        alive_only: bool = True,
        limit: int = 50,
    ) -> list[Agent]:
        key = _uuid(company_id)
        if key is None:
            return []

        def query(db: Session):
            q = db.query(models.Agent).filter(models.Agent.company_id == key)
            if alive_only:
                q = q.filter(models.Agent.is_alive.is_(True))
            if intention_id is not None:
                q = q.filter(models.Agent.intention_ids.any(intention_id))
            if skills:
                q = q.filter(models.Agent.skills.contains(list(skills)))
            rows = q.order_by(asc(models.Agent.id)).limit(limit).all()
            return [_agent(row) for row in rows]

        return await self._run(query)
