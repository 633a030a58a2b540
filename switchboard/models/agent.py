from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import ARRAY, TIMESTAMP, UUID

from switchboard.database import Base


class Agent(Base):
    __tablename__ = "agents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    company_id = Column(UUID(as_uuid=True), nullable=False, index=True)
    name = Column(Text)
    is_alive = Column(Boolean, default=True)
    skills = Column(ARRAY(Text), nullable=False, default=list)
    intention_ids = Column(ARRAY(Integer), nullable=False, default=list)
    created_at = Column(TIMESTAMP(timezone=True))
