"""
core/db.py -- Engine factory and timestamp helpers shared by every store.

One Engine per database URL per process. Every repository (UserStore,
ProjectStore, SingleUseCodes, AuditLogger, RateLimiter) asks get_engine()
for its URL, so they all share one connection pool and one schema.

SQLite specifics:
  - WAL journal mode for concurrent readers during writes.
  - foreign_keys=ON so ON DELETE CASCADE on project-derived tables fires.
    SQLite leaves FK enforcement off per connection unless asked.
  Both PRAGMAs are set per connection because the pool does not carry them.

Timestamps are stored as ISO 8601 UTC strings with a fixed microsecond
width, so string comparison in SQL orders them chronologically.

Layer rule: core/ imports nothing from the rest of the project.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from core.schema import metadata

_engines: dict[str, Engine] = {}
_lock = threading.Lock()

# ---------------------------------------------------------------------------
# Connection pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Engine factory
# ---------------------------------------------------------------------------


def get_engine(db_url: str) -> Engine:
    """Return the shared Engine for db_url, creating tables on first use."""
    with _lock:
        engine = _engines.get(db_url)
        if engine is not None:
            return engine
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(engine)
        _engines[db_url] = engine
        return engine


def dispose_engine(db_url: str) -> None:
    """Close pooled connections and forget the cached Engine for db_url."""
    with _lock:
        engine = _engines.pop(db_url, None)
    if engine is not None:
        engine.dispose()


def upsert(engine: Engine, table):
    """Return a dialect-specific INSERT supporting on_conflict_do_update().

    SQLite and PostgreSQL both implement ON CONFLICT ... DO UPDATE, which is
    what makes the rate-limit counter and the project-session refresh atomic.
    """
    if engine.dialect.name == "postgresql":
        return postgresql.insert(table)
    if engine.dialect.name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported on dialect {engine.dialect.name!r}")


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)
