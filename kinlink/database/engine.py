"""
kinlink.database.engine — Database Connection & Async Helper
=============================================================

**Why this file exists:**
Every public Kinlink operation is a coroutine, but SQLAlchemy + psycopg2 is
**synchronous**.  Calling the DB directly from an async context would stall
the event loop until the query returns.

The solution is the bridge pattern used throughout the services:

    1. A caller awaits a service method  (async world).
    2. The method calls ``await run_db(self._do_thing_sync, arg1, arg2)``.
    3. ``run_db`` ships the synchronous function to a **thread pool** via
       ``asyncio.to_thread()``.
    4. The DB work happens on a background thread; the event loop stays free.
    5. The result (or exception) is awaited back in the service.

The store round-trip is therefore the only suspension point of any operation.

Usage::

    from kinlink.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    code = await run_db(load_code, engine, "K7QXM2PA")
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kinlink.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# SQLSTATE for unique_violation (psycopg2 ``pgcode``, psycopg 3 ``sqlstate``)
_PG_UNIQUE_VIOLATION = "23505"


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or the ``DATABASE_URL`` env var.

    The connection pool is sized for an API process:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
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

    engine = create_engine(
        url,
        echo=False,        # Set True for SQL debugging
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,      # Fail after 10s instead of hanging forever
        pool_recycle=3600,    # Recycle connections after 1 hour
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`kinlink.database.models`.

    Safe to call on every startup — ``CREATE TABLE IF NOT EXISTS`` under the
    hood.

    .. note::

        In production the schema is managed by Alembic (``alembic upgrade
        head``).  ``create_all`` is retained for dev/test environments where
        Alembic may not have run.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that auto-commits on success and rolls back
    on exception.

    Objects stay readable after the block (``expire_on_commit=False``).

    Usage::

        with get_session(engine) as session:
            session.add(CommunityMembership(user_id=u, community_id=c))
            # commit happens automatically on block exit
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Constraint-violation classification
# ---------------------------------------------------------------------------
def is_unique_violation(exc: IntegrityError) -> bool:
    """Return True if *exc* was caused by a unique/primary-key constraint.

    Other integrity failures (NOT NULL, CHECK, foreign key) are storage
    faults, not races, and must not be retried.
    """
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate is not None:
        return sqlstate == _PG_UNIQUE_VIOLATION
    # sqlite3.IntegrityError carries no code on older Pythons; match the message.
    return "UNIQUE constraint failed" in str(orig)


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Every DB call in a service coroutine goes through this wrapper::

        result = await run_db(self._find_active_sync, code)

    Under the hood it calls :func:`asyncio.to_thread`, which schedules
    *func* on the default ``ThreadPoolExecutor`` so the event loop is never
    blocked.

    Parameters
    ----------
    func:
        Any sync callable (typically a method that opens a session and
        runs queries).
    *args, **kwargs:
        Forwarded to *func*.

    Returns
    -------
    T
        Whatever *func* returns.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
