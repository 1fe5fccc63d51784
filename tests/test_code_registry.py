"""
tests/test_code_registry.py — Member Connection Code Registry
===============================================================

Runs the registry against an in-memory SQLite schema.  Collisions are forced
with scripted generators so the retry path is deterministic.
"""

from __future__ import annotations

import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import COMMUNITY, OTHER_COMMUNITY, run, scripted_generator
from kinlink.database.models import MemberConnectionCode
from kinlink.engine.codes import is_valid_code
from kinlink.exceptions import CodeAllocationError
from kinlink.services.code_registry import CodeRegistry


def _active_rows(engine, owner_id: str, community_id: str = COMMUNITY):
    with Session(engine) as session:
        return session.scalars(
            select(MemberConnectionCode).where(
                MemberConnectionCode.owner_id == owner_id,
                MemberConnectionCode.community_id == community_id,
                MemberConnectionCode.is_active.is_(True),
            )
        ).all()


class TestGetOrCreate:
    def test_creates_valid_active_code(self, db_engine):
        registry = CodeRegistry(db_engine)
        row = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert is_valid_code(row.code)
        assert row.is_active is True
        assert row.owner_id == "alice"
        assert row.community_id == COMMUNITY

    def test_is_idempotent(self, db_engine):
        registry = CodeRegistry(db_engine)
        first = run(registry.get_or_create_active_code("alice", COMMUNITY))
        second = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert first.code == second.code
        assert len(_active_rows(db_engine, "alice")) == 1

    def test_codes_are_per_community(self, db_engine):
        registry = CodeRegistry(db_engine)
        one = run(registry.get_or_create_active_code("alice", COMMUNITY))
        two = run(registry.get_or_create_active_code("alice", OTHER_COMMUNITY))
        assert one.code != two.code

    def test_retries_on_collision(self, db_engine, caplog):
        taken = CodeRegistry(db_engine, generator=scripted_generator("AAAAAAAA"))
        run(taken.get_or_create_active_code("alice", COMMUNITY))

        registry = CodeRegistry(
            db_engine, generator=scripted_generator("AAAAAAAA", "AAAAAAAA", "BBBBBBBB")
        )
        with caplog.at_level(logging.WARNING, logger="kinlink.services.code_registry"):
            row = run(registry.get_or_create_active_code("bob", COMMUNITY))

        assert row.code == "BBBBBBBB"
        assert sum("collision" in r.getMessage() for r in caplog.records) == 2

    def test_exhaustion_raises_allocation_error(self, db_engine):
        run(CodeRegistry(db_engine, generator=lambda: "AAAAAAAA")
            .get_or_create_active_code("alice", COMMUNITY))

        registry = CodeRegistry(db_engine, generator=lambda: "AAAAAAAA", max_attempts=3)
        with pytest.raises(CodeAllocationError) as excinfo:
            run(registry.get_or_create_active_code("bob", COMMUNITY))
        assert excinfo.value.attempts == 3
        assert _active_rows(db_engine, "bob") == []

    def test_non_unique_integrity_error_is_not_retried(self, db_engine):
        calls = []

        def generator():
            calls.append(1)
            return "CCCCCCCC"

        registry = CodeRegistry(db_engine, generator=generator)
        with pytest.raises(IntegrityError):
            run(registry.get_or_create_active_code(None, COMMUNITY))
        assert len(calls) == 1

    def test_rejects_zero_attempts(self, db_engine):
        with pytest.raises(ValueError):
            CodeRegistry(db_engine, max_attempts=0)


class TestRegenerate:
    def test_replaces_active_code(self, db_engine):
        registry = CodeRegistry(db_engine)
        old = run(registry.get_or_create_active_code("alice", COMMUNITY))
        new = run(registry.regenerate("alice", COMMUNITY))

        assert new.code != old.code
        assert run(registry.find_active(old.code)) is None
        assert run(registry.find_active(new.code)).owner_id == "alice"
        assert [r.code for r in _active_rows(db_engine, "alice")] == [new.code]

    def test_old_row_is_kept_inactive(self, db_engine):
        registry = CodeRegistry(db_engine)
        old = run(registry.get_or_create_active_code("alice", COMMUNITY))
        run(registry.regenerate("alice", COMMUNITY))
        with Session(db_engine) as session:
            retired = session.get(MemberConnectionCode, old.code)
            assert retired is not None
            assert retired.is_active is False

    def test_never_reuses_a_previous_code(self, db_engine):
        registry = CodeRegistry(
            db_engine, generator=scripted_generator("DDDDDDDD", "DDDDDDDD", "EEEEEEEE")
        )
        old = run(registry.get_or_create_active_code("alice", COMMUNITY))
        new = run(registry.regenerate("alice", COMMUNITY))
        assert old.code == "DDDDDDDD"
        assert new.code == "EEEEEEEE"

    def test_failed_regeneration_keeps_old_code_active(self, db_engine):
        run(CodeRegistry(db_engine, generator=lambda: "FFFFFFFF")
            .get_or_create_active_code("bob", COMMUNITY))
        registry = CodeRegistry(
            db_engine, generator=scripted_generator("GGGGGGGG", "FFFFFFFF"), max_attempts=2
        )
        old = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert old.code == "GGGGGGGG"

        with pytest.raises(CodeAllocationError):
            run(registry.regenerate("alice", COMMUNITY))
        assert run(registry.find_active("GGGGGGGG")).owner_id == "alice"

    def test_regenerate_without_existing_code_allocates(self, db_engine):
        registry = CodeRegistry(db_engine)
        row = run(registry.regenerate("alice", COMMUNITY))
        assert row.is_active is True


class TestLookupAndDeactivate:
    def test_find_active_normalizes_input(self, db_engine):
        registry = CodeRegistry(db_engine, generator=lambda: "HJKMNPQR")
        run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert run(registry.find_active("  hjkmnpqr ")).owner_id == "alice"

    @pytest.mark.parametrize("raw", ["", "nope", "HJKMNPQ0"])
    def test_find_active_malformed_returns_none(self, db_engine, raw):
        assert run(CodeRegistry(db_engine).find_active(raw)) is None

    def test_find_active_for_owner(self, db_engine):
        registry = CodeRegistry(db_engine)
        assert run(registry.find_active_for_owner("alice", COMMUNITY)) is None
        row = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert run(registry.find_active_for_owner("alice", COMMUNITY)).code == row.code

    def test_deactivate(self, db_engine):
        registry = CodeRegistry(db_engine)
        row = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert run(registry.deactivate("alice", COMMUNITY)) is True
        assert run(registry.find_active(row.code)) is None
        assert run(registry.deactivate("alice", COMMUNITY)) is False

    def test_get_or_create_after_deactivate_issues_new_code(self, db_engine):
        registry = CodeRegistry(db_engine)
        old = run(registry.get_or_create_active_code("alice", COMMUNITY))
        run(registry.deactivate("alice", COMMUNITY))
        new = run(registry.get_or_create_active_code("alice", COMMUNITY))
        assert new.code != old.code
