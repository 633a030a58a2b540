from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from switchboard.config import settings

engine = create_engine(settings.database_url, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

Base = declarative_base()
