"""Tests for the client-side session metadata store."""

from unittest.mock import MagicMock

import jwt
import pytest

from vfdashboard.client.session_store import SESSION_KEY, SessionStore
from vfdashboard.domain.models import SessionMetadata
from vfdashboard.infrastructure.persistent_store import InMemoryStore

NOW = 1_750_000_000_000
HOUR = 3600 * 1000


class FakeJar(dict):
    """Cookie jar with the requests `set(name, None)` deletion convention."""

    def set(self, name, value):
        if value is None:
            self.pop(name, None)
        else:
            self[name] = value


def _meta(**overrides):
    values = dict(vin='VIN1', user_id='u1', region='vn', remember_me=False,
                  issued_at=NOW - HOUR, expires_at=NOW + HOUR)
    values.update(overrides)
    return SessionMetadata(**values)


def _cookie(meta):
    return jwt.encode(meta.to_dict(), 'server-side-key-the-client-never-sees', algorithm='HS256')


@pytest.fixture
def shared():
    return InMemoryStore()


@pytest.fixture
def jar():
    return FakeJar()


@pytest.fixture
def store(shared, jar):
    return SessionStore(persistent_store=shared, cookie_jar=jar, clock=lambda: NOW)


class TestRestoreSession:
    """Tests for restore_session."""

    def test_round_trip(self, store):
        """Test a saved record is restored."""
        store.save(_meta())
        restored = store.restore_session()
        assert restored.vin == 'VIN1'
        assert store.is_authenticated

    @pytest.mark.parametrize('overrides', [
        {},
        {'remember_me': True},
        {'vin': None, 'user_id': None},
        {'region': 'us', 'issued_at': 0},
    ])
    def test_expired_record_is_absent(self, store, shared, overrides):
        """Test a record past expires_at is purged whatever the other fields hold."""
        store.save(_meta(expires_at=NOW - 1, **overrides))

        assert store.restore_session() is None
        assert shared.get(SESSION_KEY) is None
        assert not store.is_authenticated

    def test_corrupt_record_is_purged(self, store, shared):
        """Test unparseable JSON and malformed records count as absent."""
        shared.set_raw(SESSION_KEY, '{not json')
        assert store.restore_session() is None

        shared.set(SESSION_KEY, {'vin': 'VIN1'})
        assert store.restore_session() is None
        assert shared.get(SESSION_KEY) is None

    def test_falls_back_to_cookie(self, store, shared, jar):
        """Test the readable cookie restores and re-persists the metadata."""
        jar['vf_session'] = _cookie(_meta(vin='VIN2'))

        restored = store.restore_session()

        assert restored.vin == 'VIN2'
        assert shared.get(SESSION_KEY)['vin'] == 'VIN2'

    def test_record_wins_over_cookie(self, store, jar):
        """Test the persisted record is preferred to the cookie."""
        store.save(_meta(vin='FROM_RECORD'))
        jar['vf_session'] = _cookie(_meta(vin='FROM_COOKIE'))
        assert store.restore_session().vin == 'FROM_RECORD'

    def test_expired_cookie_ignored(self, store, jar):
        """Test an expired cookie does not restore a session."""
        jar['vf_session'] = _cookie(_meta(expires_at=NOW - 1))
        assert store.restore_session() is None

    def test_clear(self, store, shared, jar):
        """Test clear drops both the record and the readable cookie."""
        store.save(_meta())
        jar['vf_session'] = _cookie(_meta())

        store.clear()

        assert shared.get(SESSION_KEY) is None
        assert 'vf_session' not in jar
        assert store.restore_session() is None


class TestCrossTab:
    """Tests for change events between stores sharing one backend."""

    def test_login_in_other_tab(self, shared):
        """Test a save in one tab flips the other tab to authenticated."""
        tab_a = SessionStore(persistent_store=shared, clock=lambda: NOW)
        tab_b = SessionStore(persistent_store=shared, clock=lambda: NOW)
        listener = MagicMock()
        tab_b.subscribe(listener)

        tab_a.save(_meta())

        listener.assert_called_once_with(True)

    def test_logout_in_other_tab(self, shared):
        """Test a clear in one tab is not undone by a stale cookie in the other."""
        tab_a = SessionStore(persistent_store=shared, clock=lambda: NOW)
        stale_jar = FakeJar(vf_session=_cookie(_meta()))
        tab_b = SessionStore(persistent_store=shared, cookie_jar=stale_jar, clock=lambda: NOW)
        tab_a.save(_meta())
        listener = MagicMock()
        tab_b.subscribe(listener)
        tab_b.restore_session()

        tab_a.clear()

        listener.assert_called_once_with(False)
        assert shared.get(SESSION_KEY) is None

    def test_own_writes_ignored(self, shared):
        """Test a tab does not react to its own change events."""
        tab = SessionStore(persistent_store=shared, clock=lambda: NOW)
        tab.restore_session = MagicMock()

        tab.save(_meta())

        tab.restore_session.assert_not_called()
