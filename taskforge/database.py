"""Database engine and session setup."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from taskforge.config import settings

Base = declarative_base()


def build_engine(database_url: str) -> Engine:
    """Create an engine, tuning SQLite for concurrent pollers."""
    if database_url.startswith("sqlite"):
        # Several worker threads share the file; wait on the write lock instead of failing
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    return create_engine(database_url, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
