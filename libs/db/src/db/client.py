"""SQLAlchemy engine/session helpers for the workspace.

Engines are created explicitly by the process entrypoint and handed to the
code that needs them; nothing here caches a process-wide engine.

Usage
-----
from db.client import create_db_engine, make_session_factory, session_scope

engine = create_db_engine(database_url="postgresql+psycopg://...")
factory = make_session_factory(engine)
with session_scope(factory) as s:
    s.execute(...)
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


def resolve_database_url(override: str | None = None) -> str:
    url = override or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not set; cannot initialize database client")
    return url


def create_db_engine(
    *,
    database_url: str | None = None,
    pool_timeout_s: float = 10.0,
    **engine_kwargs: Any,
) -> Engine:
    """Create a new SQLAlchemy engine for ``database_url`` (or ``DATABASE_URL``).

    ``pool_timeout_s`` bounds how long a checkout waits for a pooled
    connection. File-backed SQLite gets the same value as its busy timeout.
    """

    url = resolve_database_url(database_url)
    kwargs: dict[str, Any] = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"timeout": pool_timeout_s}
    else:
        kwargs["pool_timeout"] = pool_timeout_s
    kwargs.update(engine_kwargs)
    return create_engine(url, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine``."""

    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "resolve_database_url",
    "create_db_engine",
    "make_session_factory",
    "session_scope",
]
