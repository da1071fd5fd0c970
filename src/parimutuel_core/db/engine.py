"""Database engine and session management."""

from __future__ import annotations

from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def sqlalchemy_url(url: str) -> str:
    """Pin bare ``postgresql://`` URLs to the psycopg v3 driver."""
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://"):]
    return url


def init_engine(url: str, **kwargs) -> Engine:
    """Create the process-wide engine and session factory. Connections are pre-pinged."""
    global _engine, _SessionLocal
    kwargs.setdefault("pool_pre_ping", True)
    _engine = create_engine(sqlalchemy_url(url), **kwargs)
    _SessionLocal = sessionmaker(bind=_engine)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("init_engine() has not been called")
    return _engine


@contextmanager
def session_scope() -> Iterator[Session]:
    """One session for one unit of work.

    Wagering operations commit their own transactions; anything left
    uncommitted when the block raises is rolled back.
    """
    if _SessionLocal is None:
        raise RuntimeError("init_engine() has not been called")
    session = _SessionLocal()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency form of ``session_scope``."""
    with session_scope() as session:
        yield session
