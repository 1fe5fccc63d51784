"""
tests/test_connection_store.py — Undirected Member Connections
================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import COMMUNITY, OTHER_COMMUNITY, run
from kinlink.database.models import UserConnection
from kinlink.services.connection_store import ConnectionStore, ordered_pair


def _count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count()).select_from(UserConnection))


class TestOrderedPair:
    def test_sorts_pair(self):
        assert ordered_pair("bob", "alice") == ("alice", "bob")
        assert ordered_pair("alice", "bob") == ("alice", "bob")

    def test_rejects_self_pair(self):
        with pytest.raises(ValueError):
            ordered_pair("alice", "alice")


class TestCreateIfAbsent:
    def test_stores_normalized_pair(self, db_engine):
        store = ConnectionStore(db_engine)
        row = run(store.create_if_absent("bob", "alice", COMMUNITY))
        assert (row.user_a_id, row.user_b_id) == ("alice", "bob")

    def test_symmetric(self, db_engine):
        store = ConnectionStore(db_engine)
        first = run(store.create_if_absent("alice", "bob", COMMUNITY))
        second = run(store.create_if_absent("bob", "alice", COMMUNITY))
        assert first.id == second.id
        assert _count(db_engine) == 1

    def test_separate_rows_per_community(self, db_engine):
        store = ConnectionStore(db_engine)
        one = run(store.create_if_absent("alice", "bob", COMMUNITY))
        two = run(store.create_if_absent("alice", "bob", OTHER_COMMUNITY))
        assert one.id != two.id
        assert _count(db_engine) == 2

    def test_self_pair_raises(self, db_engine):
        with pytest.raises(ValueError):
            run(ConnectionStore(db_engine).create_if_absent("alice", "alice", COMMUNITY))

    def test_reuses_row_inserted_concurrently(self, db_engine, monkeypatch):
        store = ConnectionStore(db_engine)
        first = run(store.create_if_absent("alice", "bob", COMMUNITY))

        # Miss on the pre-insert lookup so the insert collides with the existing row.
        real_find = store.find_between_in
        calls = []

        def stale_then_real(session, *args):
            calls.append(args)
            return None if len(calls) == 1 else real_find(session, *args)

        monkeypatch.setattr(store, "find_between_in", stale_then_real)

        second = run(store.create_if_absent("bob", "alice", COMMUNITY))
        assert second.id == first.id
        assert len(calls) == 2
        assert _count(db_engine) == 1

    def test_collision_without_visible_row_propagates(self, db_engine, monkeypatch):
        store = ConnectionStore(db_engine)
        run(store.create_if_absent("alice", "bob", COMMUNITY))
        monkeypatch.setattr(store, "find_between_in", lambda session, *args: None)

        with pytest.raises(IntegrityError):
            run(store.create_if_absent("alice", "bob", COMMUNITY))

    def test_database_rejects_duplicate_pair(self, db_engine):
        run(ConnectionStore(db_engine).create_if_absent("alice", "bob", COMMUNITY))
        with Session(db_engine) as session:
            session.add(UserConnection(user_a_id="alice", user_b_id="bob", community_id=COMMUNITY))
            with pytest.raises(IntegrityError):
                session.commit()

    def test_database_rejects_unordered_pair(self, db_engine):
        with Session(db_engine) as session:
            session.add(UserConnection(user_a_id="bob", user_b_id="alice", community_id=COMMUNITY))
            with pytest.raises(IntegrityError):
                session.commit()


class TestQueries:
    def test_find_between_is_order_independent(self, db_engine):
        store = ConnectionStore(db_engine)
        row = run(store.create_if_absent("alice", "bob", COMMUNITY))
        assert run(store.find_between("bob", "alice", COMMUNITY)).id == row.id
        assert run(store.find_between("alice", "bob", OTHER_COMMUNITY)) is None
        assert run(store.find_between("alice", "alice", COMMUNITY)) is None

    def test_list_for_user(self, db_engine):
        store = ConnectionStore(db_engine)
        run(store.create_if_absent("alice", "bob", COMMUNITY))
        run(store.create_if_absent("carol", "alice", COMMUNITY))
        run(store.create_if_absent("bob", "carol", COMMUNITY))
        run(store.create_if_absent("alice", "dave", OTHER_COMMUNITY))

        rows = run(store.list_for_user("alice", COMMUNITY))
        assert {r.other_party("alice") for r in rows} == {"bob", "carol"}

    def test_list_for_user_newest_first(self, db_engine):
        store = ConnectionStore(db_engine)
        older = run(store.create_if_absent("alice", "bob", COMMUNITY))
        newer = run(store.create_if_absent("alice", "carol", COMMUNITY))
        rows = run(store.list_for_user("alice", COMMUNITY))
        assert [r.id for r in rows] == [newer.id, older.id]
