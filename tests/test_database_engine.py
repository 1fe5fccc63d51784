"""
tests/test_database_engine.py — Persistence Plumbing
======================================================

Unique-violation classification is checked against real SQLite errors and
against a stand-in for a PostgreSQL driver error carrying a SQLSTATE.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import COMMUNITY, run
from kinlink.database.engine import create_db_engine, get_session, is_unique_violation, run_db
from kinlink.database.models import CommunityMembership, MemberConnectionCode


def _integrity_error(engine, *rows) -> IntegrityError:
    with Session(engine) as session:
        session.add_all(rows)
        with pytest.raises(IntegrityError) as excinfo:
            session.commit()
        return excinfo.value


class TestIsUniqueViolation:
    def test_primary_key_collision(self, db_engine):
        with Session(db_engine) as session:
            session.add(MemberConnectionCode(code="AAAAAAAA", owner_id="a", community_id=COMMUNITY))
            session.commit()
        exc = _integrity_error(
            db_engine, MemberConnectionCode(code="AAAAAAAA", owner_id="b", community_id=COMMUNITY)
        )
        assert is_unique_violation(exc)

    def test_partial_unique_index(self, db_engine):
        exc = _integrity_error(
            db_engine,
            MemberConnectionCode(code="AAAAAAAA", owner_id="a", community_id=COMMUNITY),
            MemberConnectionCode(code="BBBBBBBB", owner_id="a", community_id=COMMUNITY),
        )
        assert is_unique_violation(exc)

    def test_not_null_is_not_unique(self, db_engine):
        exc = _integrity_error(
            db_engine, MemberConnectionCode(code="AAAAAAAA", owner_id=None, community_id=COMMUNITY)
        )
        assert not is_unique_violation(exc)

    @pytest.mark.parametrize("attr", ["pgcode", "sqlstate"])
    def test_postgres_sqlstate(self, attr):
        unique = IntegrityError("INSERT", {}, SimpleNamespace(**{attr: "23505"}))
        check = IntegrityError("INSERT", {}, SimpleNamespace(**{attr: "23514"}))
        assert is_unique_violation(unique)
        assert not is_unique_violation(check)


class TestSessionHelpers:
    def test_get_session_commits(self, db_engine):
        with get_session(db_engine) as session:
            session.add(CommunityMembership(user_id="alice", community_id=COMMUNITY))
        with Session(db_engine) as session:
            assert session.get(CommunityMembership, ("alice", COMMUNITY)) is not None

    def test_get_session_rolls_back_on_error(self, db_engine):
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(CommunityMembership(user_id="alice", community_id=COMMUNITY))
                session.flush()
                raise RuntimeError("boom")
        with Session(db_engine) as session:
            assert session.get(CommunityMembership, ("alice", COMMUNITY)) is None

    def test_run_db_forwards_arguments(self):
        assert run(run_db(lambda a, b=0: a + b, 2, b=3)) == 5

    def test_create_db_engine_requires_url(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()
