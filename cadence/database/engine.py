"""
cadence.database.engine — Database Connection & Async Helper
=============================================================

The worker's ticker and the activity recorder run on an ``asyncio``
event loop, while SQLAlchemy + psycopg2 is **synchronous**.  Calling the
DB directly from a coroutine would stall every other schedule in the
tick until the query returned.

Every service function is therefore plain synchronous code that opens its
own session, and async callers ship it to a worker thread::

    1. The ticker decides a schedule should fire  (async world).
    2. It calls ``await run_db(create_block_for_bucket, engine, ...)``.
    3. ``run_db`` hands the function to ``asyncio.to_thread()``.
    4. The DB work happens on a background thread; the loop stays free.

Usage::

    from cadence.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS + seed

    result = await run_db(record_activity, engine, user_id, "writing")
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from cadence.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The pool covers one worker process: ``max_concurrent_jobs`` schedule
    threads plus the rank-sync queue fit in the five pooled connections,
    with ten overflow connections for bursts.  Connections are pinged
    before use and recycled hourly.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Set it in .env (see .env.example) to a PostgreSQL URL."
        )

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine ready (host=%s)", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables and seed the default tier catalogs and constants.

    Safe on every startup.  In production the schema is managed by Alembic
    (``alembic upgrade head``); ``create_all`` remains as a safety net for
    dev/test environments.
    """
    Base.metadata.create_all(engine)
    logger.info("Schema checked; %d tables", len(Base.metadata.tables))

    from cadence.database.seed import seed_defaults

    seed_defaults(engine)


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Yield a :class:`Session` that commits on success and rolls back on
    exception."""
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
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** database function on a background thread.

    Parameters
    ----------
    func:
        Any sync callable (typically a function that opens a session and
        runs queries).
    *args, **kwargs:
        Forwarded to *func*.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
