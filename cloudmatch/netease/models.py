"""
Data models and response decoders for the NetEase Cloud Music API

Every endpoint the client talks to has exactly one decoder here. A decoder
takes the JSON object returned by the transport and either produces a typed
result or raises MalformedResponseError. Nothing outside this module reads
raw response dictionaries, so all assumptions about the remote schema live in
one place.

Endpoints and their decoders:

    GET  /api/login/qrcode/unikey         -> QrKeyResponse
    POST /api/login/qrcode/client/login   -> QrPollResponse
    POST /api/nuser/account/get           -> UserProfile
    POST /api/v1/cloud/get                -> CloudPage
    GET  /api/cloud/user/song/match       -> MatchResponse

Cloud drive rows are decoded into CatalogEntry. A row without a usable
simpleSong id or name is dropped from the page rather than failing the
whole response, which mirrors how the service itself lists half-processed
uploads.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, List, Optional

from ..utils.exceptions import MalformedResponseError
from ..utils.helpers import coerce_int
from ..utils.logger import get_logger

logger = get_logger(__name__)

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
UNKNOWN_USER = "Unknown User"


class QrLoginCode(IntEnum):
    """
    Business codes returned while polling a QR login

    Any code not listed here is treated as "still waiting".
    """
    EXPIRED = 800
    AWAITING_SCAN = 801
    AWAITING_CONFIRM = 802
    CONFIRMED = 803


SUCCESS_CODE = 200
SESSION_EXPIRED_CODE = 301


def _require_dict(payload: Any, endpoint: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise MalformedResponseError(
            f"Expected a JSON object from {endpoint}",
            details={'endpoint': endpoint, 'type': type(payload).__name__}
        )
    return payload


def _read_code(payload: Dict[str, Any], endpoint: str) -> int:
    code = payload.get('code')
    if isinstance(code, bool) or not isinstance(code, int):
        raise MalformedResponseError(
            f"Response from {endpoint} has no integer 'code'",
            details={'endpoint': endpoint, 'code': code}
        )
    return code


@dataclass
class CatalogEntry:
    """
    One song stored in the user's cloud drive

    song_id is mutable: a successful match replaces the
    entry's catalog identity with the target song's id.

    Attributes:
        song_id: Catalog id of the song this file is currently matched to
        title: Song title
        artist_name: First credited artist
        album_name: Album title
        file_name: Name of the uploaded file
        file_size_bytes: Size of the uploaded file
        bitrate: Bitrate in kbps as reported by the service
        added_at: Upload time
        cover_ref: Album cover URL, empty when unknown
        duration_ms: Track length in milliseconds
        match_target_id: Id of a pending/last match target, if any
    """
    song_id: str
    title: str
    artist_name: str = UNKNOWN_ARTIST
    album_name: str = UNKNOWN_ALBUM
    file_name: str = ""
    file_size_bytes: int = 0
    bitrate: int = 0
    added_at: datetime = field(default_factory=datetime.now)
    cover_ref: str = ""
    duration_ms: int = 0
    match_target_id: Optional[str] = None

    @classmethod
    def from_cloud_data(cls, data: Any) -> Optional['CatalogEntry']:
        """
        Build an entry from one cloud drive row

        The row layout is {simpleSong: {id, name, ar: [{name}], al: {name, picUrl}, dt},
        fileName, fileSize, bitrate, addTime, artist?, album?}.

        Args:
            data: Row dictionary from the cloud drive or match response

        Returns:
            CatalogEntry, or None when the row has no usable id or name
        """
        if not isinstance(data, dict):
            return None

        simple_song = data.get('simpleSong')
        if not isinstance(simple_song, dict):
            return None

        song_id = simple_song.get('id')
        name = simple_song.get('name')
        if isinstance(song_id, bool) or not isinstance(song_id, int) or not isinstance(name, str):
            return None

        # Artist: first credited artist, else the uploader-supplied tag
        artists = simple_song.get('ar')
        if isinstance(artists, list) and artists and isinstance(artists[0], dict):
            artist_name = artists[0].get('name') or UNKNOWN_ARTIST
        else:
            artist_name = data.get('artist') or UNKNOWN_ARTIST

        album = simple_song.get('al')
        if isinstance(album, dict):
            album_name = album.get('name') or UNKNOWN_ALBUM
            cover_ref = album.get('picUrl') or ""
        else:
            album_name = data.get('album') or UNKNOWN_ALBUM
            cover_ref = ""

        add_time = coerce_int(data.get('addTime'))
        added_at = datetime.fromtimestamp(add_time / 1000) if add_time is not None else datetime.now()

        return cls(
            song_id=str(song_id),
            title=name,
            artist_name=str(artist_name),
            album_name=str(album_name),
            file_name=data.get('fileName') or "",
            file_size_bytes=coerce_int(data.get('fileSize'), 0),
            bitrate=coerce_int(data.get('bitrate'), 0),
            added_at=added_at,
            cover_ref=str(cover_ref),
            duration_ms=coerce_int(simple_song.get('dt'), 0),
        )


@dataclass(frozen=True)
class QrKeyResponse:
    """Decoded /api/login/qrcode/unikey response"""
    code: int
    unikey: Optional[str]

    @classmethod
    def from_payload(cls, payload: Any) -> 'QrKeyResponse':
        endpoint = '/api/login/qrcode/unikey'
        data = _require_dict(payload, endpoint)
        code = _read_code(data, endpoint)
        unikey = data.get('unikey')
        if code == SUCCESS_CODE and (not isinstance(unikey, str) or not unikey):
            raise MalformedResponseError(
                "QR key response has no unikey",
                details={'endpoint': endpoint, 'code': code}
            )
        return cls(code=code, unikey=unikey if isinstance(unikey, str) else None)


@dataclass(frozen=True)
class QrPollResponse:
    """Decoded /api/login/qrcode/client/login response"""
    code: int
    message: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.code == QrLoginCode.CONFIRMED

    @property
    def is_expired(self) -> bool:
        return self.code == QrLoginCode.EXPIRED

    @classmethod
    def from_payload(cls, payload: Any) -> 'QrPollResponse':
        endpoint = '/api/login/qrcode/client/login'
        data = _require_dict(payload, endpoint)
        message = data.get('message')
        return cls(code=_read_code(data, endpoint), message=message if isinstance(message, str) else None)


@dataclass(frozen=True)
class UserProfile:
    """Decoded profile block of /api/nuser/account/get"""
    user_id: str
    nickname: str
    avatar_url: Optional[str]

    @classmethod
    def from_payload(cls, payload: Any) -> 'UserProfile':
        endpoint = '/api/nuser/account/get'
        data = _require_dict(payload, endpoint)
        profile = data.get('profile')
        if not isinstance(profile, dict):
            raise MalformedResponseError(
                "Account response has no profile (session not accepted)",
                details={'endpoint': endpoint, 'code': data.get('code')}
            )

        user_id = profile.get('userId')
        if isinstance(user_id, bool) or not isinstance(user_id, (int, str)) or user_id == "":
            raise MalformedResponseError(
                "Account profile has no userId",
                details={'endpoint': endpoint}
            )

        avatar_url = profile.get('avatarUrl')
        return cls(
            user_id=str(user_id),
            nickname=profile.get('nickname') or UNKNOWN_USER,
            avatar_url=avatar_url if isinstance(avatar_url, str) and avatar_url else None,
        )


@dataclass(frozen=True)
class CloudPage:
    """
    Decoded /api/v1/cloud/get response

    entries is only meaningful when code is 200. count, size and maxSize
    describe the whole cloud drive, not the page.
    """
    code: int
    entries: List[CatalogEntry]
    count: Optional[int] = None
    used_bytes: Optional[int] = None
    capacity_bytes: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_session_expired(self) -> bool:
        return self.code == SESSION_EXPIRED_CODE

    @classmethod
    def from_payload(cls, payload: Any) -> 'CloudPage':
        endpoint = '/api/v1/cloud/get'
        data = _require_dict(payload, endpoint)
        code = _read_code(data, endpoint)
        message = data.get('message') if isinstance(data.get('message'), str) else None

        if code != SUCCESS_CODE:
            return cls(code=code, entries=[], message=message)

        rows = data.get('data')
        if not isinstance(rows, list):
            raise MalformedResponseError(
                "Cloud page response has no 'data' list",
                details={'endpoint': endpoint, 'code': code}
            )

        entries = []
        for row in rows:
            entry = CatalogEntry.from_cloud_data(row)
            if entry is None:
                logger.debug(f"Skipping undecodable cloud row: {row!r:.200}")
                continue
            entries.append(entry)

        return cls(
            code=code,
            entries=entries,
            count=coerce_int(data.get('count')),
            used_bytes=coerce_int(data.get('size')),
            capacity_bytes=coerce_int(data.get('maxSize')),
            message=message,
        )


@dataclass(frozen=True)
class MatchResponse:
    """
    Decoded /api/cloud/user/song/match response

    updated_entry is the replacement catalog entry carried in matchData,
    or None when the service did not send one (or sent one we cannot read).
    """
    code: int
    message: Optional[str] = None
    updated_entry: Optional[CatalogEntry] = None

    @property
    def is_success(self) -> bool:
        return self.code == SUCCESS_CODE

    @classmethod
    def from_payload(cls, payload: Any) -> 'MatchResponse':
        endpoint = '/api/cloud/user/song/match'
        data = _require_dict(payload, endpoint)
        code = _read_code(data, endpoint)
        message = data.get('message')
        updated_entry = None
        if code == SUCCESS_CODE:
            updated_entry = CatalogEntry.from_cloud_data(data.get('matchData'))
        return cls(
            code=code,
            message=message if isinstance(message, str) and message else None,
            updated_entry=updated_entry,
        )
