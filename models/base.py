"""
SQLAlchemy declarative base and engine/session factories.

Two kinds of engine exist because:
- FastAPI is async → needs asyncpg driver + async sessions
- Scheduler and worker threads are sync → need psycopg2 driver + sync sessions

Nothing here is created at import time. Each process builds the engines it
needs in its entry point and hands the resulting session factories to the
components that talk to the store, so there is no process-wide store handle.
"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    """Base class for all ORM models. SQLAlchemy uses this to track table metadata."""
    pass


def build_sync_engine(url: str, **kwargs) -> Engine:
    """Pooled engine for scheduler/worker threads. pool_pre_ping drops dead connections."""
    return create_engine(url, echo=False, pool_pre_ping=True, **kwargs)


def build_sync_session_factory(engine: Engine) -> sessionmaker:
    # expire_on_commit=False so rows stay readable after the session commits
    return sessionmaker(engine, expire_on_commit=False)


def build_async_engine(url: str, **kwargs) -> AsyncEngine:
    return create_async_engine(url, echo=False, **kwargs)


def build_async_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
