# tests/test_session.py
"""Test session persistence and expiry"""

import json
import os
import stat
from datetime import datetime, timedelta

import pytest

from cloudmatch.config.session import STORAGE_KEY, Identity, SessionStore


class TestIdentity:
    """Test Identity records"""

    def test_record_layout(self, identity):
        """Test the persisted keys"""
        record = identity.to_record()
        assert record == {
            'username': 'Alice',
            'userId': '42',
            'avatarURL': 'http://p.music.126.net/avatar.jpg',
            'token': 'MUSIC_U=xyz',
            'loginTime': '2024-10-25T12:00:00',
        }

    def test_from_record(self, identity):
        assert Identity.from_record(identity.to_record()) == identity

    def test_from_invalid_record(self):
        assert Identity.from_record(None) is None
        assert Identity.from_record({'username': 'Alice'}) is None
        assert Identity.from_record({
            'username': 'Alice', 'userId': '42', 'token': 't', 'loginTime': 'yesterday'
        }) is None

    def test_missing_avatar(self):
        identity = Identity.from_record({
            'username': 'Alice', 'userId': '42', 'avatarURL': None,
            'token': 't', 'loginTime': '2024-10-25T12:00:00'
        })
        assert identity.avatar_ref is None


class TestSessionStore:
    """Test SessionStore load/save/clear"""

    def test_empty_store(self, store):
        assert store.load() is None
        assert store.current is None
        assert not store.is_logged_in

    def test_save_and_load(self, store, identity, session_path, clock):
        store.save(identity)

        assert store.is_logged_in
        assert store.current == identity

        reloaded = SessionStore(session_path, clock=clock)
        assert reloaded.load() == identity
        assert reloaded.current == identity

    def test_file_content(self, store, identity, session_path):
        store.save(identity)

        with open(session_path, encoding='utf-8') as f:
            blob = json.load(f)
        assert blob[STORAGE_KEY]['userId'] == '42'
        assert blob[STORAGE_KEY]['token'] == 'MUSIC_U=xyz'

    @pytest.mark.skipif(os.name == 'nt', reason="POSIX permissions only")
    def test_owner_only_permissions(self, store, identity, session_path):
        store.save(identity)
        mode = stat.S_IMODE(os.stat(session_path).st_mode)
        assert mode == 0o600

    def test_expired_session(self, store, identity, session_path, clock):
        """A session 30 days old is discarded and removed"""
        store.save(identity)
        clock.advance(days=30)

        reloaded = SessionStore(session_path, clock=clock)
        assert reloaded.load() is None
        assert not reloaded.is_logged_in
        assert not session_path.exists()

    def test_session_within_window(self, store, identity, session_path, clock):
        store.save(identity)
        clock.advance(days=29, hours=23)

        assert SessionStore(session_path, clock=clock).load() == identity

    def test_custom_expiry(self, store, identity, session_path, clock):
        store.save(identity)
        clock.advance(days=2)

        assert SessionStore(session_path, expiry_days=1, clock=clock).load() is None

    def test_clear(self, store, identity, session_path):
        store.save(identity)
        store.clear()

        assert store.current is None
        assert not session_path.exists()
        assert store.load() is None

    def test_clear_keeps_other_keys(self, store, identity, session_path):
        session_path.write_text(json.dumps({'theme': 'dark'}), encoding='utf-8')
        store.save(identity)
        store.clear()

        with open(session_path, encoding='utf-8') as f:
            assert json.load(f) == {'theme': 'dark'}

    def test_save_replaces_whole_record(self, store, identity, session_path, clock):
        store.save(identity)
        newer = Identity(
            user_id="42",
            display_name="Alice (new)",
            avatar_ref=None,
            session_token="MUSIC_U=new",
            issued_at=clock() + timedelta(hours=1),
        )
        store.save(newer)

        assert SessionStore(session_path, clock=clock).load() == newer

    def test_corrupt_file(self, session_path, clock):
        session_path.write_text("{not json", encoding='utf-8')

        store = SessionStore(session_path, clock=clock)
        assert store.load() is None

    def test_invalid_record_is_cleared(self, session_path, clock):
        session_path.write_text(json.dumps({STORAGE_KEY: {'username': 'x'}}), encoding='utf-8')

        store = SessionStore(session_path, clock=clock)
        assert store.load() is None
        assert not session_path.exists()

    def test_login_time_with_utc_offset(self, session_path, clock):
        """A loginTime carrying an offset loads as naive local time"""
        session_path.write_text(json.dumps({STORAGE_KEY: {
            'username': 'Alice',
            'userId': '42',
            'avatarURL': None,
            'token': 'MUSIC_U=xyz',
            'loginTime': '2024-10-25T12:00:00+00:00',
        }}), encoding='utf-8')

        store = SessionStore(session_path, clock=clock)
        loaded = store.load()

        assert loaded is not None
        assert loaded.issued_at.tzinfo is None
        assert loaded.issued_at == datetime.fromisoformat('2024-10-25T12:00:00+00:00').astimezone().replace(tzinfo=None)
        assert store.is_logged_in

    def test_default_clock(self, session_path):
        store = SessionStore(session_path)
        assert abs((store.now() - datetime.now()).total_seconds()) < 5
