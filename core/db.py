"""
core/db.py -- Engine construction and helpers shared by the SQLAlchemy stores.

  build_engine(): one place that knows how to bound storage calls. For SQLite
      the driver's busy timeout caps how long a statement waits on a
      competing writer; for server databases pool_timeout caps the wait for a
      connection. Either way a stuck store fails fast instead of hanging.

  storage_errors(): translates driver failures into StorageFailure. Store
      methods wrap their connection blocks in it so routes see a retryable
      503, never a raw OperationalError and never a silent "not found".
      IntegrityError passes through: it signals a uniqueness rule, which
      the caller handles.

  to_db() / from_db(): timestamps are stored as fixed-width UTC ISO-8601
      strings, so comparing them as strings in SQL orders them correctly.

Layer rule: core/ is the kernel. No imports from api/, auth/, content/, or cache/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from core.errors import StorageFailure

logger = logging.getLogger("newsdesk.storage")

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new connection.

    SQLite PRAGMAs are per-connection and are not inherited from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def build_engine(db_url: str, timeout: float) -> Engine:
    if db_url.startswith("sqlite"):
        engine = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": timeout})
        event.listen(engine, "connect", _configure_sqlite)
        return engine
    return create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        logger.error("Storage failure during %s: %s", operation, exc.__class__.__name__)
        raise StorageFailure() from exc


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


def from_db(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
