"""
mealdrop.database.engine — Database Connection & Session Helper
================================================================

The store is the only thing that serialises ledger mutations.  Several API
processes may run at once, so no in-process lock is trusted; every mutating
operation is one database transaction opened through :func:`get_session`.

* PostgreSQL (production): row locks taken by ``UPDATE`` and
  ``SELECT … FOR UPDATE`` order concurrent writers per row.
* SQLite (dev/test): transactions are opened with ``BEGIN IMMEDIATE`` so the
  whole database is write-locked from the first statement, and waiting
  writers block for ``busy_timeout`` instead of failing on lock upgrade.

Usage::

    from mealdrop.database.engine import create_db_engine, get_session, init_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    with get_session(engine) as session:
        ...                              # commit on exit, rollback on error
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.exc import DisconnectionError, InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from mealdrop.constants import DEFAULT_GOAL_TARGET
from mealdrop.database.models import Base
from mealdrop.errors import StorageUnavailable

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30

# Raised by the driver or pool when the store can't be reached or the
# transaction was aborted by it (deadlock, serialization failure, lock wait).
_TRANSIENT_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    PostgreSQL pool:
    * ``pool_size=5`` / ``max_overflow=10``.
    * ``pool_timeout=10`` — fail fast instead of queueing forever.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=False,
            connect_args={
                "check_same_thread": False,
                "timeout": SQLITE_BUSY_TIMEOUT_SECONDS,
            },
        )
        configure_sqlite(engine)
    else:
        engine = create_engine(
            url,
            echo=False,        # Set True for SQL debugging
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            pool_timeout=10,
            pool_recycle=3600,
        )
    logger.info("Database engine created → %s", engine.url.render_as_string(hide_password=True))
    return engine


def configure_sqlite(engine: Engine) -> None:
    """Make SQLite transactions write-exclusive from their first statement.

    pysqlite's own transaction handling begins lazily and would let two
    connections both read and then race to upgrade their locks.  Taking over
    BEGIN (the recipe from the SQLAlchemy pysqlite docs) gives one total
    order of transactions and makes SAVEPOINT behave.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine, goal_target: int = DEFAULT_GOAL_TARGET) -> None:
    """Create all tables and seed the global stats singleton.

    Safe to call on every startup.  In production the schema is managed by
    Alembic (``alembic upgrade head``); ``create_all`` is kept for dev/test.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")

    from mealdrop.database.seed import seed_global_stats

    seed_global_stats(engine, goal_target=goal_target)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine, *, expire_on_commit: bool = False):
    """Yield a :class:`Session` that commits on success and rolls back on
    any exception.

    Connectivity and lock failures surface as
    :class:`~mealdrop.errors.StorageUnavailable` so callers see one
    retryable error type; nothing was applied when it is raised.

    Usage::

        with get_session(engine) as session:
            session.add(User(id="u1", username="drew"))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=expire_on_commit)
    try:
        yield session
        session.commit()
    except _TRANSIENT_ERRORS as exc:
        session.rollback()
        logger.error("Storage unavailable, transaction rolled back: %s", exc)
        raise StorageUnavailable(f"Storage unavailable: {exc.__class__.__name__}") from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
