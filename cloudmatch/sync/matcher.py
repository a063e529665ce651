"""
Cloud drive match commands

Matching re-points an uploaded file at another song in the NetEase
catalog (for example a badly tagged upload at the official release). The
service answers with the updated cloud drive row, which then replaces the
old entry at the same position in the catalog.

Each call to match_song appends exactly one line to the activity log,
whatever the outcome, and never raises.
"""

from dataclasses import dataclass
from typing import Optional

from ..config.session import SessionStore
from ..netease import CLOUD_MATCH_ENDPOINT, CatalogEntry, MatchResponse, Transport
from ..utils.exceptions import CloudMatchError
from ..utils.logger import get_logger
from .activity import ActivityLog, ActivityStatus
from .catalog import CatalogSyncEngine

logger = get_logger(__name__)

UNKNOWN_ERROR = "unknown error"


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of a match command

    Attributes:
        success: Whether the service accepted the match
        message: Human-readable outcome, also written to the activity log
        updated_entry: Replacement entry from the service, if it sent one
    """
    success: bool
    message: str
    updated_entry: Optional[CatalogEntry] = None


class MatchEngine:
    """Issues match commands and applies their results to the catalog"""

    def __init__(
        self,
        transport: Transport,
        session_store: SessionStore,
        catalog: CatalogSyncEngine,
        activity_log: Optional[ActivityLog] = None
    ):
        self._transport = transport
        self._store = session_store
        self._catalog = catalog
        self._log = activity_log if activity_log is not None else ActivityLog()

    @property
    def activity_log(self) -> ActivityLog:
        return self._log

    def _fail(self, song_name: str, song_id: str, target_id: Optional[str], message: str) -> MatchResult:
        self._log.append(song_name, song_id, message, ActivityStatus.ERROR, match_target_id=target_id)
        return MatchResult(success=False, message=message)

    async def match_song(self, song_id: str, target_id: str) -> MatchResult:
        """
        Match a cloud drive song to another catalog song

        Args:
            song_id: Current song id of the cloud drive entry
            target_id: Catalog song id to match it to

        Returns:
            MatchResult; failures are reported here, not raised
        """
        song_id = str(song_id).strip() if song_id is not None else ""
        target_id = str(target_id).strip() if target_id is not None else ""

        # Preconditions, checked before any request
        identity = self._store.current
        if identity is None:
            return self._fail("", song_id, target_id or None, "not logged in")
        if not target_id:
            return self._fail("", song_id, None, "match target id is required")

        entry = self._catalog.find(song_id)
        if entry is None:
            return self._fail("", song_id, target_id, "cloud file does not exist")

        logger.info(f"Matching '{entry.title}' ({song_id}) to {target_id}")
        try:
            response = await self._transport.get(
                CLOUD_MATCH_ENDPOINT,
                params={
                    'userId': identity.user_id,
                    'songId': song_id,
                    'adjustSongId': target_id,
                },
                token=identity.session_token
            )
            result = MatchResponse.from_payload(response.payload)
        except CloudMatchError as e:
            return self._fail(entry.title, song_id, target_id, f"match failed: {e.message}")

        if not result.is_success:
            return self._fail(entry.title, song_id, target_id, result.message or UNKNOWN_ERROR)

        updated = result.updated_entry
        if updated is not None:
            updated.match_target_id = target_id
            if not self._catalog.replace_entry(song_id, updated):
                # The catalog was refreshed or cleared while the request was out
                logger.debug(f"Song {song_id} no longer in catalog, match result not applied")
            message = f"matched to {updated.title} ({updated.song_id})"
        else:
            message = result.message or "match succeeded"

        self._log.append(entry.title, song_id, message, ActivityStatus.SUCCESS, match_target_id=target_id)
        return MatchResult(success=True, message=message, updated_entry=updated)
