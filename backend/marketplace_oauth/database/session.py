"""
Database engine and session dependency.
"""

import logging
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from marketplace_oauth.config.settings import get_settings

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    # SQLAlchemy no longer accepts the postgres:// alias
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql://", 1)
    return database_url


@lru_cache
def get_engine() -> Engine:
    database_url = normalize_database_url(get_settings().database_url)
    return create_engine(database_url, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=get_engine())


def get_db_session() -> Iterator[Session]:
    """FastAPI dependency yielding a request scoped session."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()
