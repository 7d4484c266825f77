"""
tests/conftest.py — Shared Test Fixtures
=========================================
In-memory SQLite stands in for PostgreSQL.  Two dialect shims keep the
production models unchanged: ``JSONB`` audit snapshots are stored as TEXT
and ``BigInteger`` primary keys compile to SQLite's rowid ``INTEGER``.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest
from sqlalchemy import BigInteger, Engine, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from cadence.database.models import Base, Community, User
from cadence.database.seed import seed_defaults


@compiles(JSONB, "sqlite")
def _jsonb_on_sqlite(type_, compiler, **kw):
    return "TEXT"


@compiles(BigInteger, "sqlite")
def _bigint_on_sqlite(type_, compiler, **kw):
    return "INTEGER"


def run_async(coro):
    """Run a coroutine to completion without pytest-asyncio."""
    return asyncio.run(coro)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


@pytest.fixture
def db_engine() -> Engine:
    """Empty in-memory database with every Cadence table.

    ``run_db`` hops to worker threads, so the single connection is shared
    through StaticPool with the same-thread check disabled.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def seeded_engine(db_engine: Engine) -> Engine:
    """``db_engine`` with the default tier ladders and rank constants."""
    seed_defaults(db_engine)
    return db_engine


def make_user(engine: Engine, user_id: int, username: str = "", timezone: str = "UTC") -> int:
    with Session(engine) as session:
        session.add(User(id=user_id, username=username or f"user{user_id}", timezone=timezone))
        session.commit()
    return user_id


def make_community(engine: Engine, name: str = "Quán Dịch", owner_id: int = 1) -> int:
    """Insert an owner (if needed) and a community; return the community id."""
    with Session(engine) as session:
        if session.get(User, owner_id) is None:
            session.add(User(id=owner_id, username=f"owner{owner_id}"))
        community = Community(name=name, owner_id=owner_id)
        session.add(community)
        session.commit()
        return community.id
