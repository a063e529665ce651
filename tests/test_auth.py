# tests/test_auth.py
"""Test the QR and cookie login state machine"""

import asyncio
import warnings
from pathlib import Path

import pytest

import cloudmatch.config.auth as auth_module
from cloudmatch.config.auth import (
    AuthEngine,
    LoginChallenge,
    LoginState,
    LoginStatus,
    render_qr_ascii,
    render_qr_image
)
from cloudmatch.config.session import SessionStore
from cloudmatch.netease import (
    ACCOUNT_ENDPOINT,
    CLOUD_LIST_ENDPOINT,
    QR_KEY_ENDPOINT,
    QR_POLL_ENDPOINT
)
from cloudmatch.sync.catalog import CatalogSyncEngine
from cloudmatch.utils.exceptions import TransportError

from conftest import account_payload, cloud_page, cloud_row, settle


def queue_qr_success(transport, key="abc", waits=3):
    transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': key})
    for _ in range(waits):
        transport.queue(QR_POLL_ENDPOINT, {'code': 801, 'message': '等待扫码'})
    transport.queue(
        QR_POLL_ENDPOINT,
        {'code': 803, 'message': '授权登陆成功'},
        headers={'Set-Cookie': 'MUSIC_U=xyz; Max-Age=1296000; Path=/; HTTPOnly'}
    )
    transport.queue(ACCOUNT_ENDPOINT, account_payload(42, "Alice"))


class TestLoginState:
    """Test state value objects"""

    def test_terminal_states(self):
        """Test which states end an attempt"""
        assert not LoginState.loading().is_terminal
        assert not LoginState.awaiting_scan().is_terminal
        assert LoginState.expired().is_terminal
        assert LoginState.succeeded().is_terminal
        assert LoginState.failed("boom").is_terminal

    def test_failed_carries_reason(self):
        state = LoginState.failed("network down")
        assert state.status == LoginStatus.FAILED
        assert state.reason == "network down"
        assert str(state) == "failed: network down"

    def test_challenge_image_input(self):
        """Test the QR payload is the login URL for the key"""
        challenge = LoginChallenge.for_key("abc-123")
        assert challenge.challenge_key == "abc-123"
        assert challenge.image_input == "https://music.163.com/login?codekey=abc-123"

    def test_module_compiles_without_warnings(self):
        """Test the module source has no invalid escape sequences"""
        source = Path(auth_module.__file__).read_text(encoding='utf-8')
        with warnings.catch_warnings():
            warnings.simplefilter('error')
            compile(source, auth_module.__file__, 'exec')


class TestQrRendering:
    """Test QR code rendering"""

    def test_render_image(self):
        image = render_qr_image("https://music.163.com/login?codekey=abc")
        assert image is not None
        assert hasattr(image, 'save')

    def test_render_ascii(self):
        text = render_qr_ascii("https://music.163.com/login?codekey=abc")
        assert isinstance(text, str)
        assert len(text.splitlines()) > 10


class TestQrLogin:
    """Test the QR login flow"""

    @pytest.mark.asyncio
    async def test_scan_then_confirm(self, transport, auth_engine, catalog, store):
        """801 three times, then 803 with a cookie, then the profile"""
        queue_qr_success(transport)
        transport.queue(CLOUD_LIST_ENDPOINT, cloud_page([cloud_row(111, "Song")], count=1))

        await auth_engine.start_login()
        assert auth_engine.state.status == LoginStatus.AWAITING_SCAN
        assert auth_engine.challenge.challenge_key == "abc"

        result = await auth_engine.wait_for_result(timeout=1)

        assert result.status == LoginStatus.SUCCEEDED
        assert store.is_logged_in
        assert store.current.user_id == "42"
        assert store.current.display_name == "Alice"
        assert "MUSIC_U=xyz" in store.current.session_token
        assert auth_engine.challenge is None
        assert not auth_engine.is_polling

        polls = transport.calls_to(QR_POLL_ENDPOINT)
        assert len(polls) == 4
        assert all(call.params == {'key': 'abc', 'type': 1} for call in polls)
        assert transport.calls_to(ACCOUNT_ENDPOINT)[0].token == store.current.session_token

        # First catalog page is loaded once after login
        assert await settle(lambda: len(catalog.songs) == 1)
        assert len(transport.calls_to(CLOUD_LIST_ENDPOINT)) == 1

    @pytest.mark.asyncio
    async def test_identity_persisted(self, transport, auth_engine, session_path, clock):
        queue_qr_success(transport, waits=0)

        await auth_engine.start_login()
        await auth_engine.wait_for_result(timeout=1)

        reloaded = SessionStore(session_path, clock=clock).load()
        assert reloaded is not None
        assert reloaded.user_id == "42"

    @pytest.mark.asyncio
    async def test_expired_code(self, transport, auth_engine):
        """800 ends the attempt; a new start_login gets a new key"""
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'first'})
        transport.queue(QR_POLL_ENDPOINT, {'code': 800, 'message': '二维码不存在或已过期'})

        await auth_engine.start_login()
        result = await auth_engine.wait_for_result(timeout=1)

        assert result.status == LoginStatus.EXPIRED
        assert auth_engine.challenge is None
        assert not auth_engine.is_polling

        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'second'})
        transport.hold(QR_POLL_ENDPOINT)
        await auth_engine.start_login()

        assert auth_engine.state.status == LoginStatus.AWAITING_SCAN
        assert auth_engine.challenge.challenge_key == "second"
        assert len(transport.calls_to(QR_KEY_ENDPOINT)) == 2
        await auth_engine.aclose()

    @pytest.mark.asyncio
    async def test_poll_failure(self, transport, auth_engine):
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})
        transport.queue(QR_POLL_ENDPOINT, TransportError("connection reset"))

        await auth_engine.start_login()
        result = await auth_engine.wait_for_result(timeout=1)

        assert result.status == LoginStatus.FAILED
        assert "connection reset" in result.reason
        assert not auth_engine.is_polling

    @pytest.mark.asyncio
    async def test_challenge_request_rejected(self, transport, auth_engine):
        transport.queue(QR_KEY_ENDPOINT, {'code': 400})

        await auth_engine.start_login()

        assert auth_engine.state.status == LoginStatus.FAILED
        assert auth_engine.challenge is None
        assert not auth_engine.is_polling
        assert transport.calls_to(QR_POLL_ENDPOINT) == []

    @pytest.mark.asyncio
    async def test_challenge_request_unreachable(self, transport, auth_engine):
        transport.queue(QR_KEY_ENDPOINT, TransportError("Request to /api/login/qrcode/unikey timed out"))

        await auth_engine.start_login()

        assert auth_engine.state.status == LoginStatus.FAILED
        assert "timed out" in auth_engine.state.reason

    @pytest.mark.asyncio
    async def test_confirm_without_cookie(self, transport, auth_engine, store):
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})
        transport.queue(QR_POLL_ENDPOINT, {'code': 803})

        await auth_engine.start_login()
        result = await auth_engine.wait_for_result(timeout=1)

        assert result.status == LoginStatus.FAILED
        assert not store.is_logged_in
        assert transport.calls_to(ACCOUNT_ENDPOINT) == []

    @pytest.mark.asyncio
    async def test_already_logged_in(self, transport, logged_in_store):
        engine = AuthEngine(transport, logged_in_store, poll_interval=0, renderer=None)

        await engine.start_login()

        assert transport.calls == []
        assert engine.state.status == LoginStatus.LOADING

    @pytest.mark.asyncio
    async def test_concurrent_start_login(self, transport, auth_engine):
        """Only one challenge request is made for overlapping calls"""
        key_gate = transport.hold(QR_KEY_ENDPOINT)
        transport.hold(QR_POLL_ENDPOINT)
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})

        tasks = [asyncio.create_task(auth_engine.start_login()) for _ in range(3)]
        await settle(lambda: len(transport.calls_to(QR_KEY_ENDPOINT)) == 1)
        key_gate.set()
        await asyncio.gather(*tasks)

        assert len(transport.calls_to(QR_KEY_ENDPOINT)) == 1
        assert auth_engine.state.status == LoginStatus.AWAITING_SCAN
        await auth_engine.aclose()

    @pytest.mark.asyncio
    async def test_restart_replaces_challenge(self, transport, auth_engine):
        """A second start_login cancels polling for the first key"""
        transport.set_default(QR_POLL_ENDPOINT, {'code': 801})
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'first'})
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'second'})

        await auth_engine.start_login()
        await settle(lambda: len(transport.calls_to(QR_POLL_ENDPOINT)) >= 2)

        await auth_engine.start_login()
        marker = len(transport.calls)
        await settle(lambda: len(transport.calls) >= marker + 5)
        assert auth_engine.challenge.challenge_key == "second"
        await auth_engine.aclose()

        later_polls = [call for call in transport.calls[marker:] if call.path == QR_POLL_ENDPOINT]
        assert later_polls
        assert all(call.params['key'] == 'second' for call in later_polls)

    @pytest.mark.asyncio
    async def test_wait_for_result_timeout(self, transport, auth_engine):
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})
        transport.hold(QR_POLL_ENDPOINT)

        await auth_engine.start_login()
        with pytest.raises(asyncio.TimeoutError):
            await auth_engine.wait_for_result(timeout=0.05)
        await auth_engine.aclose()

    @pytest.mark.asyncio
    async def test_renderer_output_published(self, transport, store):
        engine = AuthEngine(transport, store, poll_interval=0, renderer=lambda data: f"IMG[{data}]")
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})
        transport.hold(QR_POLL_ENDPOINT)

        await engine.start_login()

        assert engine.qr_image == "IMG[https://music.163.com/login?codekey=abc]"
        await engine.aclose()


class TestCookieLogin:
    """Test the cookie login path"""

    @pytest.mark.asyncio
    async def test_success(self, transport, auth_engine, catalog, store):
        transport.queue(ACCOUNT_ENDPOINT, account_payload(7, "Bob"))
        transport.queue(CLOUD_LIST_ENDPOINT, cloud_page([cloud_row(111, "Song")], count=1))

        assert await auth_engine.login_with_cookie("MUSIC_U=cookie-value") is True

        assert auth_engine.state.status == LoginStatus.SUCCEEDED
        assert store.current.user_id == "7"
        assert store.current.session_token == "MUSIC_U=cookie-value"
        assert transport.calls_to(ACCOUNT_ENDPOINT)[0].token == "MUSIC_U=cookie-value"
        assert transport.calls_to(QR_KEY_ENDPOINT) == []
        assert len(transport.calls_to(CLOUD_LIST_ENDPOINT)) == 1
        assert len(catalog.songs) == 1

    @pytest.mark.asyncio
    async def test_rejected_cookie(self, transport, auth_engine, catalog, store, session_path):
        """A session the service does not accept leaves nothing behind"""
        transport.queue(ACCOUNT_ENDPOINT, {'code': 301, 'account': None, 'profile': None})

        assert await auth_engine.login_with_cookie("MUSIC_U=stale") is False

        assert auth_engine.state.status == LoginStatus.FAILED
        assert auth_engine.state.reason
        assert not store.is_logged_in
        assert not session_path.exists()
        assert transport.calls_to(CLOUD_LIST_ENDPOINT) == []

    @pytest.mark.asyncio
    async def test_empty_cookie(self, transport, auth_engine):
        assert await auth_engine.login_with_cookie("   ") is False

        assert auth_engine.state == LoginState.failed("empty cookie")
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_already_logged_in(self, transport, logged_in_store):
        engine = AuthEngine(transport, logged_in_store, poll_interval=0, renderer=None)

        assert await engine.login_with_cookie("MUSIC_U=other") is False
        assert transport.calls == []
        assert logged_in_store.current.session_token == "MUSIC_U=xyz"

    @pytest.mark.asyncio
    async def test_cancels_qr_polling(self, transport, auth_engine, store):
        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'abc'})
        transport.hold(QR_POLL_ENDPOINT)
        await auth_engine.start_login()
        assert auth_engine.is_polling

        transport.queue(ACCOUNT_ENDPOINT, account_payload())
        assert await auth_engine.login_with_cookie("MUSIC_U=abc")

        assert not auth_engine.is_polling
        assert auth_engine.challenge is None
        assert store.is_logged_in

    @pytest.mark.asyncio
    async def test_observers_notified(self, transport, auth_engine):
        seen = []
        unsubscribe = auth_engine.subscribe(seen.append)
        transport.queue(ACCOUNT_ENDPOINT, account_payload())

        await auth_engine.login_with_cookie("MUSIC_U=abc")
        unsubscribe()
        await auth_engine.login_with_cookie("")

        assert [state.status for state in seen] == [LoginStatus.SUCCEEDED]


class TestLogout:
    """Test logout and the fresh login it starts"""

    @pytest.mark.asyncio
    async def test_logout_starts_new_login(self, transport, logged_in_store, session_path):
        engine = AuthEngine(transport, logged_in_store, poll_interval=0, renderer=None)
        catalog = CatalogSyncEngine(transport, logged_in_store, auth=engine)
        engine.attach_catalog(catalog)

        transport.queue(CLOUD_LIST_ENDPOINT, cloud_page([cloud_row(111, "Song")], count=1))
        await catalog.fetch_page(1)
        assert catalog.total_count == 1

        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'fresh'})
        transport.hold(QR_POLL_ENDPOINT)
        await engine.logout()

        assert not logged_in_store.is_logged_in
        assert not session_path.exists()
        assert catalog.songs == ()
        assert catalog.total_count is None
        assert engine.state.status == LoginStatus.AWAITING_SCAN
        assert engine.challenge.challenge_key == "fresh"
        await engine.aclose()

    @pytest.mark.asyncio
    async def test_logout_discards_pending_profile(self, transport, auth_engine, store):
        """A profile arriving after logout is not saved"""
        profile_gate = transport.hold(ACCOUNT_ENDPOINT)
        transport.queue(ACCOUNT_ENDPOINT, account_payload())
        login = asyncio.create_task(auth_engine.login_with_cookie("MUSIC_U=abc"))
        await settle(lambda: len(transport.calls_to(ACCOUNT_ENDPOINT)) == 1)

        transport.queue(QR_KEY_ENDPOINT, {'code': 200, 'unikey': 'fresh'})
        transport.hold(QR_POLL_ENDPOINT)
        await auth_engine.logout()
        profile_gate.set()

        assert await login is False
        assert not store.is_logged_in
        assert auth_engine.state.status == LoginStatus.AWAITING_SCAN
        await auth_engine.aclose()
