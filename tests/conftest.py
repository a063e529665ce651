"""Test configuration and fixtures"""

import asyncio
import tempfile
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from cloudmatch.config.auth import AuthEngine
from cloudmatch.config.session import Identity, SessionStore
from cloudmatch.netease import TransportResponse
from cloudmatch.sync.activity import ActivityLog
from cloudmatch.sync.catalog import CatalogSyncEngine
from cloudmatch.sync.matcher import MatchEngine
from cloudmatch.utils.exceptions import TransportError


@dataclass
class RecordedCall:
    """One request seen by FakeTransport"""
    method: str
    path: str
    params: Optional[Dict[str, Any]]
    token: Optional[str]


class FakeTransport:
    """
    Scripted stand-in for cloudmatch.netease.Transport

    Responses are queued per path and consumed in order. A queued item may be
    a payload dict, a TransportResponse, an exception instance (raised), or an
    async callable receiving the RecordedCall. Requests to a path with nothing
    queued fall back to set_default(), else raise TransportError.
    """

    def __init__(self):
        self.calls: List[RecordedCall] = []
        self._queues = defaultdict(deque)
        self._defaults: Dict[str, Any] = {}
        self._gates: Dict[str, asyncio.Event] = {}
        self.closed = False

    def queue(self, path: str, payload: Any = None, headers: Optional[Dict[str, str]] = None) -> None:
        if isinstance(payload, dict):
            payload = TransportResponse(status_code=200, payload=payload, headers=headers or {})
        self._queues[path].append(payload)

    def set_default(self, path: str, payload: Dict[str, Any]) -> None:
        self._defaults[path] = payload

    def hold(self, path: str) -> asyncio.Event:
        """Block requests to path until the returned event is set"""
        gate = asyncio.Event()
        self._gates[path] = gate
        return gate

    def calls_to(self, path: str) -> List[RecordedCall]:
        return [call for call in self.calls if call.path == path]

    async def get(self, path, params=None, token=None):
        return await self._handle('GET', path, params, token)

    async def post(self, path, data=None, token=None):
        return await self._handle('POST', path, data, token)

    async def _handle(self, method, path, params, token):
        call = RecordedCall(method, path, params, token)
        self.calls.append(call)

        gate = self._gates.get(path)
        if gate is not None:
            await gate.wait()
        await asyncio.sleep(0)

        queue = self._queues[path]
        if queue:
            item = queue.popleft()
        elif path in self._defaults:
            item = TransportResponse(status_code=200, payload=self._defaults[path], headers={})
        else:
            raise TransportError(f"No scripted response for {path}")

        if isinstance(item, Exception):
            raise item
        if callable(item):
            return await item(call)
        return item

    def close(self):
        self.closed = True


class FakeClock:
    """Controllable replacement for datetime.now"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


async def settle(predicate, attempts: int = 200) -> bool:
    """Let scheduled tasks run until predicate() is true"""
    for _ in range(attempts):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


def cloud_row(song_id: int, name: str, artist: str = "Test Artist", album: str = "Test Album",
              add_time: int = 1700000000000, file_size: int = 5242880) -> Dict[str, Any]:
    """One /api/v1/cloud/get data row"""
    return {
        'simpleSong': {
            'id': song_id,
            'name': name,
            'ar': [{'id': 1, 'name': artist}],
            'al': {'id': 2, 'name': album, 'picUrl': f"http://p.music.126.net/{song_id}.jpg"},
            'dt': 225000,
        },
        'fileName': f"{name}.mp3",
        'fileSize': file_size,
        'bitrate': 320,
        'addTime': add_time,
    }


def cloud_page(rows: List[Dict[str, Any]], count: int = 2, size: int = 1073741824,
               max_size: int = 64424509440) -> Dict[str, Any]:
    """A successful /api/v1/cloud/get payload"""
    return {
        'code': 200,
        'data': rows,
        'count': count,
        'size': str(size),
        'maxSize': str(max_size),
        'hasMore': False,
    }


def account_payload(user_id: int = 42, nickname: str = "Alice") -> Dict[str, Any]:
    return {
        'code': 200,
        'account': {'id': user_id},
        'profile': {'userId': user_id, 'nickname': nickname, 'avatarUrl': "http://p.music.126.net/avatar.jpg"},
    }


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def session_path(temp_dir):
    return temp_dir / "session.json"


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 10, 25, 12, 0, 0))


@pytest.fixture
def store(session_path, clock):
    return SessionStore(session_path, clock=clock)


@pytest.fixture
def identity(clock):
    return Identity(
        user_id="42",
        display_name="Alice",
        avatar_ref="http://p.music.126.net/avatar.jpg",
        session_token="MUSIC_U=xyz",
        issued_at=clock(),
    )


@pytest.fixture
def logged_in_store(store, identity):
    store.save(identity)
    return store


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def auth_engine(transport, store):
    return AuthEngine(transport, store, poll_interval=0, renderer=None)


@pytest.fixture
def catalog(transport, store, auth_engine):
    engine = CatalogSyncEngine(transport, store, auth=auth_engine, page_size=200)
    auth_engine.attach_catalog(engine)
    return engine


@pytest.fixture
def matcher(transport, store, catalog, clock):
    return MatchEngine(transport, store, catalog, ActivityLog(clock=clock))


@pytest.fixture
def sample_rows():
    """Two cloud drive rows, newest first"""
    return [
        cloud_row(111, "Wrong Title", artist="Somebody", album="Bootleg", add_time=1700000500000),
        cloud_row(333, "Other Song", artist="Another Artist", album="Live at Home", add_time=1700000000000),
    ]
