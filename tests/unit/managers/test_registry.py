"""Unit tests for SessionRegistry."""

from __future__ import annotations

import pytest

from deskgate.managers.session import SessionRegistry
from deskgate.models.session import LifecycleState
from tests.fakes import make_session


class TestIndices:
    def test_insert_indexes_by_id_and_owner(self):
        registry = SessionRegistry()
        session = make_session("s1")

        registry.insert(session)

        assert registry.get("s1") is session
        assert registry.get_by_owner("alice") == {"s1"}
        assert "s1" in registry
        assert len(registry) == 1

    def test_remove_clears_both_indices_and_terminates(self):
        registry = SessionRegistry()
        session = make_session("s1")
        registry.insert(session)

        removed = registry.remove("s1")

        assert removed is session
        assert registry.get("s1") is None
        assert registry.get_by_owner("alice") == set()
        assert session.lifecycle_state == LifecycleState.TERMINATED

    def test_remove_absent_is_noop(self):
        registry = SessionRegistry()
        assert registry.remove("missing") is None

    def test_get_by_owner_returns_a_copy(self):
        registry = SessionRegistry()
        registry.insert(make_session("s1"))

        owned = registry.get_by_owner("alice")
        owned.add("bogus")

        assert registry.get_by_owner("alice") == {"s1"}

    def test_duplicate_insert_rejected(self):
        registry = SessionRegistry()
        registry.insert(make_session("s1"))

        with pytest.raises(ValueError):
            registry.insert(make_session("s1"))


class TestReservations:
    def test_reserved_port_counts_but_session_is_invisible(self):
        registry = SessionRegistry()
        session = make_session("s1", host_port=6080)

        registry.reserve(session)

        assert registry.ports_in_use() == {6080, 6001}
        assert registry.get("s1") is None
        assert registry.get_by_owner("alice") == set()

    def test_insert_promotes_reservation(self):
        registry = SessionRegistry()
        session = make_session("s1")
        registry.reserve(session)

        registry.insert(session)

        assert registry.get("s1") is session
        assert registry.ports_in_use() == {6080, 6001}

    def test_release_frees_port(self):
        registry = SessionRegistry()
        registry.reserve(make_session("s1"))

        registry.release("s1")

        assert registry.ports_in_use() == set()


class TestRemovalListeners:
    def test_listener_called_on_remove_and_clear(self):
        registry = SessionRegistry()
        seen: list[str] = []
        registry.add_removal_listener(lambda s: seen.append(s.session_id))
        registry.insert(make_session("s1"))
        registry.insert(make_session("s2", host_port=6081))

        registry.remove("s1")
        registry.clear()

        assert seen == ["s1", "s2"]
        assert len(registry) == 0

    def test_failing_listener_does_not_break_removal(self):
        registry = SessionRegistry()

        def boom(_session):
            raise RuntimeError("listener failed")

        registry.add_removal_listener(boom)
        registry.insert(make_session("s1"))

        assert registry.remove("s1") is not None
        assert registry.get("s1") is None
