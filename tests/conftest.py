"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import asyncio
import os

# ---------------------------------------------------------------------------
# Ensure a valid JWT_SECRET is always set for test runs.
# This must happen before any import of kinlink.api.deps which validates
# the secret at module-load time.
# ---------------------------------------------------------------------------
_TEST_JWT_SECRET = "test-secret-for-pytest-only-" + "x" * 40  # > 32 chars
os.environ.setdefault("JWT_SECRET", _TEST_JWT_SECRET)

import pytest  # noqa: E402
from sqlalchemy import Engine, create_engine  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from kinlink.database.models import Base, CommunityMembership  # noqa: E402

COMMUNITY = "community-1"
OTHER_COMMUNITY = "community-2"


def run(coro):
    """Drive a service coroutine to completion from a sync test."""
    return asyncio.run(coro)


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Kinlink tables.

    Uses StaticPool so all threads share the same in-memory database
    (required by ``asyncio.to_thread`` used in ``run_db``).
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def db_session(db_engine: Engine):
    """Provide a session for seeding and inspecting rows."""
    with Session(db_engine) as session:
        yield session
        session.rollback()


def add_member(engine: Engine, user_id: str, community_id: str = COMMUNITY) -> None:
    """Insert a community membership row."""
    with Session(engine) as session:
        session.add(CommunityMembership(user_id=user_id, community_id=community_id))
        session.commit()


@pytest.fixture
def members(db_engine: Engine):
    """Seed alice, bob and carol as members of COMMUNITY."""
    for user_id in ("alice", "bob", "carol"):
        add_member(db_engine, user_id)
    return db_engine


def scripted_generator(*codes: str):
    """Return a code generator that yields *codes* in order, then repeats the last."""
    queue = list(codes)

    def _next() -> str:
        return queue.pop(0) if len(queue) > 1 else queue[0]

    return _next


def make_token(sub: str) -> str:
    """Create a user JWT signed with the test secret."""
    import jwt

    from kinlink.api.deps import JWT_ALGORITHM, JWT_SECRET

    return jwt.encode({"sub": sub}, JWT_SECRET, algorithm=JWT_ALGORITHM)
