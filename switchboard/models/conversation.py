import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from switchboard.database import Base


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    channel_id = Column(UUID(as_uuid=True), ForeignKey("channels.id"), nullable=False)
    contact_id = Column(Text, nullable=False)  # provider sender id, e.g. 7701234567@c.us
    intention_id = Column(Integer, ForeignKey("intentions.id"))
    assigned_agent_id = Column(Integer, ForeignKey("agents.id"), index=True)
    workflow_state = Column(JSONB)
    status = Column(Text, nullable=False, default="open")  # open, closed
    last_message_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    messages = relationship("Message", back_populates="conversation")
