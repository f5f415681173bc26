# src/models/database.py
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

DEFAULT_DATABASE_URL = "sqlite:///./castquest_sync.db"

Base = declarative_base()


def make_engine(database_url: Optional[str] = None, pool_size: int = 10, max_overflow: int = 20) -> Engine:
    """Create an engine for the local sync store"""
    url = database_url or DEFAULT_DATABASE_URL

    # Configure engine based on database type
    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False}  # Sessions run in worker threads
        )

    # PostgreSQL or other databases
    return create_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autoflush=False, bind=engine)
