from sqlalchemy import Column, Integer, Text

from switchboard.database import Base


class Intention(Base):
    __tablename__ = "intentions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    instructions = Column(Text, nullable=False, default="")
    flow_name = Column(Text)  # bound workflow, e.g. reception
