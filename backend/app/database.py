from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
from app.config import get_settings


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # Local runs and tests: one shared connection so in-memory data survives
        return create_engine(
            database_url, echo=False,
            connect_args={"check_same_thread": False}, poolclass=StaticPool,
        )
    return create_engine(database_url, echo=False, pool_pre_ping=True)


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
