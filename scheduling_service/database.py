from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from scheduling_service.config import DATABASE_URL
from scheduling_service.models import Base


def make_engine(url: str = DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


def make_session_factory(bind):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine()
SessionLocal = make_session_factory(engine)


def init_db(bind=engine):
    Base.metadata.create_all(bind=bind)
