"""
HTTP transport for the NetEase Cloud Music API

This module is the only place that performs network I/O. It knows how to send
a GET or form-encoded POST, attach the session cookie, and turn the answer
into a TransportResponse; it knows nothing about what the payloads mean.

Requests are made with a shared requests.Session. Because requests is
blocking, each call runs in a worker thread through asyncio.to_thread and
the caller awaits the result back on the event loop. Callers therefore never
mutate their own state from a worker thread.

Error mapping:
- connection problems and timeouts        -> TransportError
- HTTP 401                                -> UnauthorizedError
- any other non-2xx status                -> TransportError(status_code=...)
- body that is not a JSON object          -> MalformedResponseError

The request-encryption scheme used by the official clients is not
implemented; an optional ``encoder`` callable can transform parameters
before they are sent.
"""

import asyncio
from dataclasses import dataclass, field
from http.cookiejar import DefaultCookiePolicy
from http.cookies import CookieError, SimpleCookie
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from ..utils.exceptions import MalformedResponseError, TransportError, UnauthorizedError
from ..utils.logger import get_logger

logger = get_logger(__name__)

SESSION_COOKIE_NAME = "MUSIC_U"

# Attributes that appear in Set-Cookie headers but are not cookies themselves
_COOKIE_ATTRIBUTES = {
    'path', 'domain', 'expires', 'max-age', 'secure', 'httponly', 'samesite', 'version', 'comment'
}


@dataclass(frozen=True)
class TransportResponse:
    """
    A decoded HTTP response

    Attributes:
        status_code: HTTP status code
        payload: JSON object from the body
        headers: Response headers (case-insensitive mapping)
    """
    status_code: int
    payload: Dict[str, Any]
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def set_cookie(self) -> Optional[str]:
        """Raw Set-Cookie header, or None when the server sent none"""
        for name, value in self.headers.items():
            if name.lower() == 'set-cookie' and value:
                return value
        return None


def build_cookie_header(token: Optional[str]) -> Optional[str]:
    """
    Turn an opaque session token into a Cookie request header

    The token is whatever the login produced: usually the raw Set-Cookie
    header of the confirmed QR poll, or a value pasted by the user. Cookie
    pairs are kept and Set-Cookie attributes (Path, Expires, ...) dropped.
    A bare value without '=' is treated as the MUSIC_U cookie.

    Args:
        token: Session token, may be None or empty

    Returns:
        Value for the Cookie header, or None if there is nothing to send
    """
    if not token or not token.strip():
        return None

    token = token.strip()
    if '=' not in token:
        return f"{SESSION_COOKIE_NAME}={token}"

    pairs = []
    # requests folds repeated Set-Cookie headers into one comma-separated value,
    # and each piece may carry its own attribute list after ';'
    for segment in token.replace(',', ';').split(';'):
        name, sep, value = segment.strip().partition('=')
        name = name.strip()
        if not sep or not name or name.lower() in _COOKIE_ATTRIBUTES:
            continue
        pairs.append(f"{name}={value.strip()}")

    if not pairs:
        return None
    return "; ".join(pairs)


def extract_cookie(token: Optional[str], name: str = SESSION_COOKIE_NAME) -> Optional[str]:
    """
    Read a single cookie value out of a session token

    Args:
        token: Session token as stored in the session record
        name: Cookie name to look for

    Returns:
        Cookie value, or None if absent
    """
    header = build_cookie_header(token)
    if not header:
        return None
    cookie = SimpleCookie()
    try:
        cookie.load(header)
    except CookieError:
        return None
    morsel = cookie.get(name)
    return morsel.value if morsel else None


class Transport:
    """
    Generic request/response primitive over HTTP

    One instance is created at start-up and shared by the auth, catalog and
    match engines. It holds no login state: the session token is passed in
    by the caller on every authenticated request.
    """

    def __init__(
        self,
        base_url: str = "https://music.163.com",
        timeout: float = 30,
        user_agent: Optional[str] = None,
        debug: bool = False,
        encoder: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the transport

        Args:
            base_url: Service root, paths are appended to it
            timeout: Per-request timeout in seconds
            user_agent: User-Agent header value
            debug: Log full request and response details at DEBUG level
            encoder: Optional parameter transform applied before sending
            session: Pre-built requests.Session (mainly for tests)
        """
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.debug = debug
        self.encoder = encoder
        self.session = session or requests.Session()
        # Session state travels in the token; the jar must not add its own cookies
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
        self.session.headers.update({
            'Referer': f"{self.base_url}/",
        })
        if user_agent:
            self.session.headers['User-Agent'] = user_agent

    def _url(self, path: str) -> str:
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _encode(self, params: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if params is None:
            return None
        params = {key: value for key, value in params.items() if value is not None}
        return self.encoder(params) if self.encoder else params

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> TransportResponse:
        """
        Send a GET request with query parameters

        Args:
            path: Endpoint path relative to base_url
            params: Query parameters
            token: Session token for authenticated endpoints

        Returns:
            TransportResponse
        """
        return await self._request('GET', path, params=params, token=token)

    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> TransportResponse:
        """
        Send a form-encoded POST request

        Args:
            path: Endpoint path relative to base_url
            data: Form fields
            token: Session token for authenticated endpoints

        Returns:
            TransportResponse
        """
        return await self._request('POST', path, data=data, token=token)

    async def _request(self, method: str, path: str, **kwargs) -> TransportResponse:
        return await asyncio.to_thread(self._send, method, path, **kwargs)

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> TransportResponse:
        """Blocking request, runs in a worker thread"""
        url = self._url(path)
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}
        cookie_header = build_cookie_header(token)
        if cookie_header:
            headers['Cookie'] = cookie_header

        params = self._encode(params)
        data = self._encode(data)

        if self.debug:
            logger.debug(f"Request: {method} {url} params={params} data={data}")

        try:
            response = self.session.request(
                method,
                url,
                params=params,
                data=data,
                headers=headers,
                timeout=self.timeout
            )
        except requests.Timeout as e:
            raise TransportError(
                f"Request to {path} timed out",
                details={'endpoint': path, 'original_error': str(e)}
            ) from e
        except requests.RequestException as e:
            raise TransportError(
                f"Request to {path} failed: {e}",
                details={'endpoint': path, 'original_error': str(e)}
            ) from e

        if self.debug:
            logger.debug(f"Response: {response.status_code} headers={dict(response.headers)}")

        if response.status_code == 401:
            raise UnauthorizedError(
                f"Request to {path} was not authorized",
                details={'endpoint': path}
            )
        if not 200 <= response.status_code < 300:
            raise TransportError(
                f"Request to {path} failed with HTTP {response.status_code}",
                details={'endpoint': path},
                status_code=response.status_code
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"Response from {path} is not valid JSON",
                details={'endpoint': path, 'original_error': str(e)}
            ) from e

        if not isinstance(payload, dict):
            raise MalformedResponseError(
                f"Response from {path} is not a JSON object",
                details={'endpoint': path}
            )

        if self.debug:
            logger.debug(f"Response data: {payload}")

        return TransportResponse(
            status_code=response.status_code,
            payload=payload,
            headers=response.headers
        )

    def close(self) -> None:
        """Close the underlying HTTP session"""
        self.session.close()
