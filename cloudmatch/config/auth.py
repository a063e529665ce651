"""
QR-code and cookie login for NetEase Cloud Music

This module implements the login state machine. It issues QR login
challenges, polls the service until the code is scanned and confirmed,
fetches the account profile, and publishes the resulting Identity through
the SessionStore.

The login flow:
1. Request a challenge key (unikey)
2. Render the login URL for that key as a QR code
3. Poll the login endpoint every few seconds
4. On confirmation, capture the session cookie from the response headers
5. Fetch the account profile with that cookie
6. Save the Identity and trigger the first catalog sync

A cookie copied from a browser can be used instead of steps 1-4.

States (LoginStatus):

    LOADING --challenge obtained--> AWAITING_SCAN --803--> SUCCEEDED
                                         |  +--800--> EXPIRED
                                         |   +--error--> FAILED
                                         +--801/other--> (keep polling)

Any terminal state can be left by calling start_login() again, which always
asks the service for a brand-new challenge.

All state changes happen on the event loop. Each login attempt gets a
sequence number; results that arrive for an attempt that has since been
superseded (new start_login, cookie login, logout) are dropped, and each
poll tick checks that its challenge key is still the current one before
acting on a response.
"""

import asyncio
import contextlib
import io
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

import qrcode

from ..netease import (
    ACCOUNT_ENDPOINT,
    QR_KEY_ENDPOINT,
    QR_LOGIN_URL,
    QR_POLL_ENDPOINT,
    QrKeyResponse,
    QrPollResponse,
    Transport,
    UserProfile,
)
from ..utils.exceptions import CloudMatchError, RemoteServiceError
from ..utils.logger import get_logger
from .session import Identity, SessionStore

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 3.0


class LoginStatus(Enum):
    """
    Login attempt lifecycle

    Values:
        LOADING: Requesting a challenge (initial state)
        AWAITING_SCAN: QR code shown, polling for confirmation
        EXPIRED: The QR code expired before it was confirmed
        SUCCEEDED: Identity obtained and saved
        FAILED: The attempt failed, see LoginState.reason
    """
    LOADING = "loading"
    AWAITING_SCAN = "awaiting_scan"
    EXPIRED = "expired"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = {LoginStatus.EXPIRED, LoginStatus.SUCCEEDED, LoginStatus.FAILED}


@dataclass(frozen=True)
class LoginState:
    """Current login state; reason is only set for FAILED"""
    status: LoginStatus
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def loading(cls) -> 'LoginState':
        return cls(LoginStatus.LOADING)

    @classmethod
    def awaiting_scan(cls) -> 'LoginState':
        return cls(LoginStatus.AWAITING_SCAN)

    @classmethod
    def expired(cls) -> 'LoginState':
        return cls(LoginStatus.EXPIRED)

    @classmethod
    def succeeded(cls) -> 'LoginState':
        return cls(LoginStatus.SUCCEEDED)

    @classmethod
    def failed(cls, reason: str) -> 'LoginState':
        return cls(LoginStatus.FAILED, reason)

    def __str__(self) -> str:
        if self.reason:
            return f"{self.status.value}: {self.reason}"
        return self.status.value


@dataclass(frozen=True)
class LoginChallenge:
    """
    A single-use QR login challenge

    Attributes:
        challenge_key: unikey issued by the service
        image_input: Text encoded into the QR code
    """
    challenge_key: str
    image_input: str

    @classmethod
    def for_key(cls, key: str) -> 'LoginChallenge':
        return cls(challenge_key=key, image_input=QR_LOGIN_URL.format(key=key))


def _build_qr(data: str) -> qrcode.QRCode:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    return qr


def render_qr_image(data: str) -> Any:
    """
    Render data as a QR code image

    Returns:
        A PIL-backed image (qrcode.image.pil.PilImage); call .save(path)
        or .get_image() to get the underlying PIL.Image
    """
    return _build_qr(data).make_image(fill_color="black", back_color="white")


def render_qr_ascii(data: str) -> str:
    """Render data as a QR code made of block characters for terminals"""
    buffer = io.StringIO()
    _build_qr(data).print_ascii(out=buffer, invert=True)
    return buffer.getvalue()


class AuthEngine:
    """
    Login state machine and identity publisher

    Key responsibilities:
    - QR challenge issuance and polling
    - Cookie login
    - Profile fetch and Identity creation
    - Logout, which immediately starts a fresh QR login

    Attributes:
        poll_interval: Seconds between QR status checks
    """

    def __init__(
        self,
        transport: Transport,
        session_store: SessionStore,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        renderer: Optional[Callable[[str], Any]] = render_qr_image
    ):
        """
        Initialize the engine

        Args:
            transport: Shared HTTP transport
            session_store: Owner of the persisted Identity
            poll_interval: Seconds between QR status checks
            renderer: Turns the challenge text into an image; None disables rendering
        """
        self._transport = transport
        self._store = session_store
        self.poll_interval = poll_interval
        self._renderer = renderer

        self._state = LoginState.loading()
        self._challenge: Optional[LoginChallenge] = None
        self._qr_image: Any = None
        self._pending_token: Optional[str] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._busy = False
        self._attempt = 0
        self._catalog = None
        self._listeners: List[Callable[[LoginState], None]] = []
        self._waiters: List[asyncio.Future] = []

    def attach_catalog(self, catalog) -> None:
        """
        Connect the catalog sync engine

        The catalog is cleared on logout and fetched once after a login
        succeeds.
        """
        self._catalog = catalog

    # -- published state ----------------------------------------------------

    @property
    def state(self) -> LoginState:
        return self._state

    @property
    def challenge(self) -> Optional[LoginChallenge]:
        return self._challenge

    @property
    def qr_image(self) -> Any:
        """Rendered image of the current challenge, if any"""
        return self._qr_image

    @property
    def identity(self) -> Optional[Identity]:
        return self._store.current

    @property
    def is_logged_in(self) -> bool:
        return self._store.is_logged_in

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, callback: Callable[[LoginState], None]) -> Callable[[], None]:
        """
        Register an observer for state changes

        Returns:
            A function that removes the observer again
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _set_state(self, state: LoginState) -> None:
        if state == self._state:
            return
        self._state = state
        logger.debug(f"Login state -> {state}")

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Login state listener failed")

        if state.is_terminal:
            waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(state)

    async def wait_for_result(self, timeout: Optional[float] = None) -> LoginState:
        """
        Wait until the current attempt reaches a terminal state

        Returns immediately if the state is already terminal.

        Raises:
            asyncio.TimeoutError: If timeout elapses first
        """
        if self._state.is_terminal:
            return self._state
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            return await asyncio.wait_for(waiter, timeout)
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    # -- session ------------------------------------------------------------

    def restore_session(self) -> Optional[Identity]:
        """Load a saved, unexpired identity from the session store"""
        return self._store.load()

    def _begin_attempt(self) -> int:
        """Invalidate whatever is in flight and start a new attempt"""
        self._stop_polling()
        self._attempt += 1
        self._challenge = None
        self._qr_image = None
        self._pending_token = None
        self._busy = False
        return self._attempt

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    # -- QR login -----------------------------------------------------------

    async def start_login(self) -> None:
        """
        Start a QR login attempt

        Does nothing if a user is logged in or a challenge is already being
        requested. Otherwise cancels any previous polling, requests a new
        challenge and starts polling for it. Failures are reported through
        the FAILED state, never raised.
        """
        if self.is_logged_in:
            logger.info("Already logged in, not starting a QR login")
            return
        if self._busy:
            logger.info("A login request is already in progress, please wait")
            return

        attempt = self._begin_attempt()
        self._busy = True
        self._set_state(LoginState.loading())
        logger.info("Starting QR login")

        try:
            challenge = await self._request_challenge()
        except CloudMatchError as e:
            if attempt == self._attempt:
                self._busy = False
                self._set_state(LoginState.failed(f"Could not get a login QR code: {e.message}"))
            return

        if attempt != self._attempt:
            logger.debug("Discarding challenge for a superseded login attempt")
            return
        self._busy = False
        if self.is_logged_in:
            return

        try:
            image = self._renderer(challenge.image_input) if self._renderer else None
        except Exception as e:
            logger.exception("Failed to render QR code")
            self._set_state(LoginState.failed(f"Could not render QR code: {e}"))
            return

        self._challenge = challenge
        self._qr_image = image
        self._set_state(LoginState.awaiting_scan())
        self._poll_task = asyncio.create_task(self._poll_loop(challenge, attempt))

    async def _request_challenge(self) -> LoginChallenge:
        response = await self._transport.get(QR_KEY_ENDPOINT, params={'type': 1})
        decoded = QrKeyResponse.from_payload(response.payload)
        if decoded.code != 200:
            raise RemoteServiceError(
                f"QR key request returned code {decoded.code}",
                code=decoded.code,
                details={'endpoint': QR_KEY_ENDPOINT}
            )
        logger.debug(f"Got QR key {decoded.unikey}")
        return LoginChallenge.for_key(decoded.unikey)

    def _is_current(self, challenge: LoginChallenge) -> bool:
        return self._challenge is not None and self._challenge.challenge_key == challenge.challenge_key

    async def _poll_loop(self, challenge: LoginChallenge, attempt: int) -> None:
        """Check the QR login status until it is confirmed, expires or fails"""
        logger.debug(f"Polling login status every {self.poll_interval}s")
        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                if not self._is_current(challenge):
                    return

                try:
                    response = await self._transport.post(
                        QR_POLL_ENDPOINT,
                        data={'key': challenge.challenge_key, 'type': 1}
                    )
                    result = QrPollResponse.from_payload(response.payload)
                except CloudMatchError as e:
                    if self._is_current(challenge):
                        self._challenge = None
                        self._set_state(LoginState.failed(f"Login status check failed: {e.message}"))
                    return

                if not self._is_current(challenge):
                    return

                if result.is_confirmed:
                    logger.info("QR login confirmed")
                    self._challenge = None
                    self._poll_task = None
                    token = response.set_cookie
                    if not token:
                        self._set_state(LoginState.failed("Login confirmed but no session cookie was returned"))
                        return
                    self._pending_token = token
                    self._busy = True
                    await self._complete_login(attempt)
                    return

                if result.is_expired:
                    logger.info("QR code expired")
                    self._challenge = None
                    self._set_state(LoginState.expired())
                    return

                logger.debug(f"Waiting for scan (code {result.code})")
        finally:
            if self._poll_task is asyncio.current_task():
                self._poll_task = None

    # -- cookie login -------------------------------------------------------

    async def login_with_cookie(self, token: str) -> bool:
        """
        Log in with a session cookie instead of a QR code

        Args:
            token: Cookie string (e.g. "MUSIC_U=...") or a bare MUSIC_U value

        Returns:
            True on success. Failures set the FAILED state and return False.
        """
        if self.is_logged_in:
            logger.info("Already logged in, ignoring cookie login")
            return False

        token = (token or "").strip()
        if not token:
            self._begin_attempt()
            self._set_state(LoginState.failed("empty cookie"))
            return False

        attempt = self._begin_attempt()
        self._busy = True
        self._pending_token = token
        self._set_state(LoginState.loading())
        logger.info("Logging in with cookie")
        return await self._complete_login(attempt)

    # -- shared completion --------------------------------------------------

    async def _fetch_profile(self, token: Optional[str]) -> UserProfile:
        response = await self._transport.post(ACCOUNT_ENDPOINT, token=token)
        return UserProfile.from_payload(response.payload)

    async def _complete_login(self, attempt: int) -> bool:
        """Fetch the profile for the pending token and publish the Identity"""
        token = self._pending_token or ""
        try:
            profile = await self._fetch_profile(token)
        except CloudMatchError as e:
            if attempt == self._attempt:
                self._pending_token = None
                self._busy = False
                self._set_state(LoginState.failed(f"Could not load account profile: {e.message}"))
            return False

        if attempt != self._attempt:
            logger.debug("Discarding profile for a superseded login attempt")
            return False

        identity = Identity(
            user_id=profile.user_id,
            display_name=profile.nickname,
            avatar_ref=profile.avatar_url,
            session_token=token,
            issued_at=self._store.now(),
        )
        try:
            self._store.save(identity)
        except CloudMatchError as e:
            self._pending_token = None
            self._busy = False
            self._set_state(LoginState.failed(e.message))
            return False

        self._pending_token = None
        self._busy = False
        self._set_state(LoginState.succeeded())
        logger.console_info(f"Logged in as {identity.display_name} ({identity.user_id})")

        await self._sync_catalog()
        return True

    async def _sync_catalog(self) -> None:
        if self._catalog is None:
            return
        try:
            await self._catalog.fetch_page(1)
        except CloudMatchError as e:
            logger.warning(f"Initial cloud drive sync failed: {e.message}")

    # -- logout -------------------------------------------------------------

    async def logout(self) -> None:
        """
        Log out and immediately begin a new QR login

        Stops polling, removes the saved identity, clears the catalog and
        resets to LOADING before calling start_login().
        """
        logger.console_info("Logging out")
        self._begin_attempt()
        self._store.clear()
        if self._catalog is not None:
            self._catalog.clear()
        self._set_state(LoginState.loading())
        await self.start_login()

    async def aclose(self) -> None:
        """Stop background polling; the engine can be reused afterwards"""
        task = self._poll_task
        self._begin_attempt()
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
