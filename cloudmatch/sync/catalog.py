"""
Cloud drive catalog synchronization

CatalogSyncEngine owns the in-memory list of the user's cloud drive songs.
It fetches one page at a time from /api/v1/cloud/get and keeps the quota
figures (song count, used bytes, capacity) reported by the service.

Rules:
- Only one fetch may be outstanding. A call made while another is in
  flight is dropped (logged and answered with None), never queued.
- Fetching requires a logged-in identity.
- The quota figures are captured from the first successful fetch of a
  session and kept until clear(); later pages do not overwrite them.
- A response saying the session has expired (code 301, or HTTP 401) forces
  a logout through the AuthEngine and raises SessionExpiredError. The
  catalog may force a logout, the AuthEngine never asks the catalog to.
- Nothing is retried.

Entries are replaced in place by the MatchEngine after a successful match,
so positions in the list are stable.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..config.session import SessionStore
from ..netease import CLOUD_LIST_ENDPOINT, CatalogEntry, CloudPage, Transport
from ..utils.exceptions import (
    PreconditionError,
    RemoteServiceError,
    SessionExpiredError,
    UnauthorizedError
)
from ..utils.helpers import contains_text
from ..utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 200

# Attributes of CatalogEntry that sorted_songs() accepts
SORT_KEYS = (
    'added_at',
    'title',
    'artist_name',
    'album_name',
    'file_name',
    'file_size_bytes',
    'bitrate',
    'duration_ms',
)


@dataclass(frozen=True)
class CatalogSnapshot:
    """
    Immutable view of the catalog after a fetch

    Attributes:
        entries: Songs of the fetched page, in service order
        total_count: Number of songs in the whole cloud drive
        used_bytes: Storage used
        capacity_bytes: Storage quota
        page: 1-based page number of entries
        page_size: Page size used for the fetch
    """
    entries: Tuple[CatalogEntry, ...]
    total_count: Optional[int] = None
    used_bytes: Optional[int] = None
    capacity_bytes: Optional[int] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __len__(self) -> int:
        return len(self.entries)


class CatalogSyncEngine:
    """Paginated cloud drive fetcher and owner of the song list"""

    def __init__(
        self,
        transport: Transport,
        session_store: SessionStore,
        auth=None,
        page_size: int = DEFAULT_PAGE_SIZE
    ):
        """
        Initialize the engine

        Args:
            transport: Shared HTTP transport
            session_store: Source of the current Identity
            auth: AuthEngine used to force a logout when the session expires
            page_size: Default number of songs per page
        """
        if page_size < 1:
            raise PreconditionError("Page size must be >= 1", details={'page_size': page_size})

        self._transport = transport
        self._store = session_store
        self._auth = auth
        self.page_size = page_size

        self._songs: List[CatalogEntry] = []
        self._fetching = False
        self._current_page = 1
        self._total_count: Optional[int] = None
        self._used_bytes: Optional[int] = None
        self._capacity_bytes: Optional[int] = None

    def attach_auth(self, auth) -> None:
        self._auth = auth

    # -- published state ----------------------------------------------------

    @property
    def songs(self) -> Tuple[CatalogEntry, ...]:
        return tuple(self._songs)

    @property
    def total_count(self) -> Optional[int]:
        return self._total_count

    @property
    def used_bytes(self) -> Optional[int]:
        return self._used_bytes

    @property
    def capacity_bytes(self) -> Optional[int]:
        return self._capacity_bytes

    @property
    def is_fetching(self) -> bool:
        return self._fetching

    @property
    def current_page(self) -> int:
        return self._current_page

    @property
    def snapshot(self) -> CatalogSnapshot:
        return CatalogSnapshot(
            entries=tuple(self._songs),
            total_count=self._total_count,
            used_bytes=self._used_bytes,
            capacity_bytes=self._capacity_bytes,
            page=self._current_page,
            page_size=self.page_size,
        )

    def total_pages(self, page_size: Optional[int] = None) -> Optional[int]:
        """Number of pages for the whole drive, None while the count is unknown"""
        if self._total_count is None:
            return None
        size = page_size or self.page_size
        return max(1, math.ceil(self._total_count / size))

    # -- fetching -----------------------------------------------------------

    async def fetch_page(self, page: int = 1, page_size: Optional[int] = None) -> Optional[CatalogSnapshot]:
        """
        Fetch one page of the cloud drive and replace the song list with it

        Args:
            page: 1-based page number
            page_size: Songs per page, defaults to the engine's page_size

        Returns:
            The new snapshot, or None if the request was rejected because a
            fetch is already in flight or nobody is logged in

        Raises:
            PreconditionError: page or page_size is not positive
            SessionExpiredError: The service rejected the session (after logout)
            RemoteServiceError: The service answered with another error code
            TransportError, MalformedResponseError: Request or decode failure
        """
        size = self.page_size if page_size is None else page_size
        if page < 1:
            raise PreconditionError("Page number must be >= 1", details={'page': page})
        if size < 1:
            raise PreconditionError("Page size must be >= 1", details={'page_size': size})

        if self._fetching:
            logger.warning(f"Cloud drive fetch already in progress, page {page} request dropped")
            return None

        identity = self._store.current
        if identity is None:
            logger.warning("Not logged in, cannot fetch cloud drive")
            return None

        logger.info(f"Fetching cloud drive page {page} ({size} per page)")
        self._fetching = True
        try:
            response = await self._transport.post(
                CLOUD_LIST_ENDPOINT,
                data={'limit': size, 'offset': (page - 1) * size},
                token=identity.session_token
            )
            result = CloudPage.from_payload(response.payload)
        except UnauthorizedError as e:
            self._fetching = False
            await self._force_logout()
            raise SessionExpiredError(
                "Session expired, please log in again",
                details={'endpoint': CLOUD_LIST_ENDPOINT, 'original_error': e.message}
            ) from e
        finally:
            self._fetching = False

        if result.is_session_expired:
            await self._force_logout()
            raise SessionExpiredError(
                "Session expired, please log in again",
                details={'endpoint': CLOUD_LIST_ENDPOINT, 'code': result.code}
            )

        if result.code != 200:
            raise RemoteServiceError(
                result.message or f"Cloud drive request returned code {result.code}",
                code=result.code,
                details={'endpoint': CLOUD_LIST_ENDPOINT}
            )

        if self._store.current is not identity:
            logger.debug("Session changed during fetch, discarding page")
            return None

        self._songs = list(result.entries)
        self._current_page = page
        self.page_size = size

        # Quota figures belong to the session, not to the page
        if self._total_count is None:
            self._total_count = result.count
        if self._used_bytes is None:
            self._used_bytes = result.used_bytes
        if self._capacity_bytes is None:
            self._capacity_bytes = result.capacity_bytes

        logger.info(f"Loaded {len(self._songs)} songs (total {self._total_count})")
        return self.snapshot

    async def _force_logout(self) -> None:
        logger.warning("Session expired while fetching cloud drive, logging out")
        if self._auth is not None:
            await self._auth.logout()
        else:
            self._store.clear()
            self.clear()

    # -- entry access -------------------------------------------------------

    def index_of(self, song_id: str) -> Optional[int]:
        for index, entry in enumerate(self._songs):
            if entry.song_id == song_id:
                return index
        return None

    def find(self, song_id: str) -> Optional[CatalogEntry]:
        index = self.index_of(song_id)
        return self._songs[index] if index is not None else None

    def replace_entry(self, song_id: str, entry: CatalogEntry) -> bool:
        """
        Replace the entry with song_id, keeping its position

        Returns:
            True if an entry was replaced
        """
        index = self.index_of(song_id)
        if index is None:
            return False
        self._songs[index] = entry
        return True

    def clear(self) -> None:
        """Forget all songs and quota figures"""
        self._songs = []
        self._current_page = 1
        self._total_count = None
        self._used_bytes = None
        self._capacity_bytes = None
        logger.debug("Catalog cleared")

    # -- presentation -------------------------------------------------------

    def search(self, text: Optional[str]) -> List[CatalogEntry]:
        """Songs whose title, artist or album contains text (case-insensitive)"""
        if not text or not text.strip():
            return list(self._songs)
        needle = text.strip()
        return [
            entry for entry in self._songs
            if contains_text(entry.title, needle)
            or contains_text(entry.artist_name, needle)
            or contains_text(entry.album_name, needle)
        ]

    def sorted_songs(
        self,
        key: str = 'added_at',
        reverse: bool = True,
        entries: Optional[List[CatalogEntry]] = None
    ) -> List[CatalogEntry]:
        """
        Songs sorted by a CatalogEntry attribute

        Default order is newest upload first. entries (for example a search
        result) is sorted instead of the whole catalog when given.

        Raises:
            PreconditionError: key is not one of SORT_KEYS
        """
        if key not in SORT_KEYS:
            raise PreconditionError(
                f"Cannot sort by '{key}'",
                details={'key': key, 'allowed': list(SORT_KEYS)}
            )

        def sort_value(entry: CatalogEntry):
            value = getattr(entry, key)
            return value.casefold() if isinstance(value, str) else value

        source = self._songs if entries is None else entries
        return sorted(source, key=sort_value, reverse=reverse)
