"""DB helpers for tests: bootstrap a temporary SQLite database with the ledger schema."""

from __future__ import annotations

from pathlib import Path

from db import Base
from db.client import create_db_engine
from sqlalchemy import event, inspect
from sqlalchemy.engine import Engine


def bootstrap_sqlite_db(db_file: Path) -> Engine:
    """Create a SQLite database file, initialize the schema and return an engine.

    Using a file-backed SQLite DB ensures multiple SQLAlchemy connections (and
    the worker threads holding them) share the same state; in-memory DBs are
    per-connection by default.
    """

    db_file.parent.mkdir(parents=True, exist_ok=True)
    engine = create_db_engine(database_url=f"sqlite+pysqlite:///{db_file}")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_conn, _):  # pragma: no cover - tiny bridge
        dbapi_conn.execute("PRAGMA foreign_keys = ON")

    Base.metadata.create_all(bind=engine)
    _assert_schema_in_sync(engine)
    return engine


def _assert_schema_in_sync(engine: Engine) -> None:
    """ORM column sets match the created tables (catches model/helper drift)."""

    insp = inspect(engine)
    for table in Base.metadata.sorted_tables:
        expected = {c.name for c in table.columns}
        got = {c["name"] for c in insp.get_columns(table.name)}
        missing = expected - got
        extra = got - expected
        assert not missing and not extra, (
            f"{table.name} schema drift: missing={missing or '∅'}, extra={extra or '∅'}"
        )
