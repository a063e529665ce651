"""
Session persistence for the logged-in NetEase identity

The session store keeps one record, the Identity, in a small JSON key-value
file under the storage key "userInfo". The record is only ever written or
removed as a whole: a changed profile or avatar means building a new
Identity and saving it again.

Record layout (values are strings):

    {
      "userInfo": {
        "username": "...",
        "userId": "...",
        "avatarURL": "..." | null,
        "token": "...",
        "loginTime": "2024-10-25T12:00:00"
      }
    }

A record older than the expiry window (30 days by default) is discarded at
load time and the file entry is cleared as a side effect. Files are written
to a temporary sibling and moved into place so a crash never leaves a
half-written session behind, and permissions are restricted to the owner
because the record contains the session cookie.
"""

import json
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..utils.exceptions import SessionStoreError
from ..utils.logger import get_logger

logger = get_logger(__name__)

STORAGE_KEY = "userInfo"
DEFAULT_EXPIRY_DAYS = 30


@dataclass(frozen=True)
class Identity:
    """
    The authenticated user

    Frozen: changes produce a new Identity (dataclasses.replace) which
    must be saved through SessionStore.save.

    Attributes:
        user_id: NetEase user id, as a string
        display_name: Nickname shown in the UI
        avatar_ref: Avatar image URL, if known
        session_token: Opaque session token (cookie string)
        issued_at: When the login happened
    """
    user_id: str
    display_name: str
    avatar_ref: Optional[str]
    session_token: str
    issued_at: datetime

    def to_record(self) -> Dict[str, Any]:
        """Serialize to the persisted record layout"""
        return {
            'username': self.display_name,
            'userId': self.user_id,
            'avatarURL': self.avatar_ref,
            'token': self.session_token,
            'loginTime': self.issued_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Any) -> Optional['Identity']:
        """
        Rebuild an Identity from a persisted record

        Returns:
            Identity, or None when required fields are missing or invalid
        """
        if not isinstance(record, dict):
            return None

        required_fields = ['username', 'userId', 'token', 'loginTime']
        if not all(isinstance(record.get(name), str) for name in required_fields):
            return None

        try:
            issued_at = datetime.fromisoformat(record['loginTime'])
        except ValueError:
            return None
        if issued_at.tzinfo is not None:
            # Expiry is compared against naive local time
            issued_at = issued_at.astimezone().replace(tzinfo=None)

        avatar = record.get('avatarURL')
        return cls(
            user_id=record['userId'],
            display_name=record['username'],
            avatar_ref=avatar if isinstance(avatar, str) and avatar else None,
            session_token=record['token'],
            issued_at=issued_at,
        )


class SessionStore:
    """
    Durable, expiring storage for the single logged-in Identity

    The store is the only writer of the identity. Other components read
    ``current`` / ``is_logged_in`` and ask the store to save or clear.
    """

    def __init__(
        self,
        path: Path,
        expiry_days: int = DEFAULT_EXPIRY_DAYS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the store

        Nothing is read from disk until load() is called.

        Args:
            path: JSON file holding the session record
            expiry_days: Age after which a saved session is discarded
            clock: Returns "now"; injectable for tests
        """
        self.path = Path(path).expanduser()
        self.expiry_window = timedelta(days=expiry_days)
        self._clock = clock or datetime.now
        self._current: Optional[Identity] = None

    @property
    def current(self) -> Optional[Identity]:
        """Identity currently in memory, None when logged out"""
        return self._current

    @property
    def is_logged_in(self) -> bool:
        return self._current is not None

    def now(self) -> datetime:
        return self._clock()

    def _read_blob(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                blob = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read session file {self.path}: {e}")
            return {}
        return blob if isinstance(blob, dict) else {}

    def _write_blob(self, blob: Dict[str, Any]) -> None:
        """Atomically replace the session file with blob"""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix='.session-', suffix='.tmp', dir=self.path.parent)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(blob, f, indent=2, ensure_ascii=False)
                try:
                    # 0o600 = owner read/write only
                    os.chmod(tmp_name, 0o600)
                except OSError:
                    pass  # not supported on every platform
                os.replace(tmp_name, self.path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise SessionStoreError(
                f"Failed to write session file {self.path}: {e}",
                details={'path': str(self.path)}
            ) from e

    def load(self) -> Optional[Identity]:
        """
        Read the saved identity

        Returns:
            The saved Identity, or None if there is none, it cannot be read,
            or it is older than the expiry window. In the last two cases the
            record is also cleared.
        """
        blob = self._read_blob()
        record = blob.get(STORAGE_KEY)
        if record is None:
            logger.debug("No saved session found")
            self._current = None
            return None

        identity = Identity.from_record(record)
        if identity is None:
            logger.warning("Saved session record is invalid, discarding it")
            self.clear()
            return None

        if self.now() - identity.issued_at >= self.expiry_window:
            logger.info(f"Saved session for {identity.display_name} has expired, login required")
            self.clear()
            return None

        self._current = identity
        logger.info(f"Restored session for {identity.display_name} ({identity.user_id})")
        return identity

    def save(self, identity: Identity) -> None:
        """
        Persist identity, replacing any previous record

        Raises:
            SessionStoreError: If the file cannot be written
        """
        blob = self._read_blob()
        blob[STORAGE_KEY] = identity.to_record()
        self._write_blob(blob)
        self._current = identity
        logger.debug(f"Session saved for {identity.display_name}")

    def clear(self) -> None:
        """Remove the saved identity entirely"""
        self._current = None
        blob = self._read_blob()
        blob.pop(STORAGE_KEY, None)
        try:
            if blob:
                self._write_blob(blob)
            elif self.path.exists():
                self.path.unlink()
        except (OSError, SessionStoreError) as e:
            logger.warning(f"Failed to remove session file {self.path}: {e}")
        logger.debug("Session cleared")
