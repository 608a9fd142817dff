"""
Tests for the Session Manager
=============================
Session lifecycle, isolation, expiry and eviction.
"""

import threading

import pytest

from config_logging import SessionNotFoundError
from revision_engine.models import Author, EditOp
from revision_engine.sessions import SessionManager, get_session_manager, reset_session_manager


class FakeTime:
    """Seconds clock for TTL tests."""

    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def manager(fake_time):
    return SessionManager(max_sessions=3, session_ttl=60, time_func=fake_time)


class TestLifecycle:
    """Tests for creating, using and closing sessions."""

    def test_create_and_get(self, manager):
        """A new session holds a tracker over the given document."""
        session_id = manager.create_session("Draft", author=Author("u1", "Ana"),
                                            metadata={'name': 'draft.txt'})
        session = manager.get_session(session_id)
        assert session.tracker.document == "Draft"
        assert session.tracker.author.id == "u1"
        assert session.metadata == {'name': 'draft.txt'}
        assert session_id in manager
        assert len(manager) == 1

    def test_unknown_session(self, manager):
        """Missing sessions raise SessionNotFoundError."""
        with pytest.raises(SessionNotFoundError):
            manager.get_session("nope")
        with pytest.raises(SessionNotFoundError):
            with manager.session("nope"):
                pass

    def test_close(self, manager):
        """Closing removes the session; closing twice reports False."""
        session_id = manager.create_session("x")
        assert manager.close_session(session_id) is True
        assert manager.close_session(session_id) is False
        assert session_id not in manager

    def test_sessions_are_isolated(self, manager):
        """Edits in one session never show up in another."""
        first = manager.create_session("Same text")
        second = manager.create_session("Same text")
        with manager.session(first) as tracker:
            tracker.apply_edit(EditOp.insert(0, "New. "))
        with manager.session(second) as tracker:
            assert tracker.current_changes() == []
            assert tracker.document == "Same text"

    def test_disabled_session(self, manager):
        """Sessions may start with tracking turned off."""
        session_id = manager.create_session("abc", enabled=False)
        with manager.session(session_id) as tracker:
            tracker.apply_edit(EditOp.insert(3, "d"))
            assert tracker.current_changes() == []

    def test_list_sessions(self, manager, fake_time):
        """Summaries list the most recently active first."""
        older = manager.create_session("a")
        fake_time.now += 5
        newer = manager.create_session("b")
        listed = manager.list_sessions()
        assert [s['session_id'] for s in listed] == [newer, older]
        assert listed[0]['pending_changes'] == 0
        assert 'document' not in listed[0]

    def test_to_dict_with_document(self, manager):
        """The document is included on request."""
        session_id = manager.create_session("Body")
        data = manager.get_session(session_id).to_dict(include_document=True)
        assert data['document'] == "Body"
        assert data['enabled'] is True


class TestExpiry:
    """Tests for idle expiry and capacity eviction."""

    def test_idle_sessions_expire(self, manager, fake_time):
        """Sessions idle past the TTL are dropped on the next create."""
        stale = manager.create_session("old")
        fake_time.now += 61
        fresh = manager.create_session("new")
        assert stale not in manager
        assert fresh in manager

    def test_use_keeps_session_alive(self, manager, fake_time):
        """Touching a session resets its idle time."""
        session_id = manager.create_session("kept")
        fake_time.now += 50
        with manager.session(session_id):
            pass
        fake_time.now += 50
        manager.create_session("other")
        assert session_id in manager

    def test_evicts_least_recently_used(self, manager, fake_time):
        """At capacity the least recently active session goes first."""
        ids = []
        for text in ("a", "b", "c"):
            ids.append(manager.create_session(text))
            fake_time.now += 1
        with manager.session(ids[0]):
            pass
        fake_time.now += 1
        newest = manager.create_session("d")
        assert len(manager) == 3
        assert ids[1] not in manager
        assert ids[0] in manager
        assert newest in manager


class TestConcurrency:
    """Tests for serialized access to one session."""

    def test_parallel_edits_are_serialized(self, manager):
        """Concurrent writers to one session never lose an edit."""
        session_id = manager.create_session("")

        def writer(char):
            for _ in range(50):
                with manager.session(session_id) as tracker:
                    tracker.apply_edit(EditOp.insert(len(tracker.document), char))

        threads = [threading.Thread(target=writer, args=(c,)) for c in "abcd"]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with manager.session(session_id) as tracker:
            assert len(tracker.document) == 200
            assert tracker.original_text() == ""


class TestGlobalManager:
    """Tests for the process-wide manager."""

    def test_singleton(self):
        """The global manager is shared until reset."""
        manager = get_session_manager()
        assert get_session_manager() is manager
        reset_session_manager()
        assert get_session_manager() is not manager

    def test_uses_app_config(self, monkeypatch):
        """Capacity comes from the application configuration."""
        import config_logging
        monkeypatch.setenv('REV_MAX_SESSIONS', '7')
        config_logging.reset_config()
        try:
            assert get_session_manager()._max_sessions == 7
        finally:
            monkeypatch.delenv('REV_MAX_SESSIONS')
            config_logging.reset_config()
