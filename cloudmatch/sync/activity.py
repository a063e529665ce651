"""
Append-only activity log for match operations

Every match attempt produces exactly one entry, appended when the attempt
completes. Entries are never removed, reordered or merged, so the order of
the log is the order in which attempts finished.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator, List, Optional, Tuple

from ..utils.helpers import format_timestamp
from ..utils.logger import get_logger

logger = get_logger(__name__)


class ActivityStatus(Enum):
    """Outcome of a logged operation"""
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class ActivityLogEntry:
    """
    One line of the activity log

    Attributes:
        song_name: Title of the song the operation was about (may be empty)
        song_id: Song id as given by the caller
        match_target_id: Target id of a match, if any
        message: Human-readable outcome
        status: SUCCESS, ERROR or INFO
        timestamp: When the entry was appended
    """
    song_name: str
    song_id: str
    match_target_id: Optional[str]
    message: str
    status: ActivityStatus
    timestamp: datetime = field(default_factory=datetime.now)

    def format_line(self) -> str:
        """Single-line rendering used by the CLI"""
        label = self.song_name or self.song_id
        target = f" -> {self.match_target_id}" if self.match_target_id else ""
        return (
            f"[{format_timestamp(self.timestamp, '%H:%M:%S')}] "
            f"{self.status.value.upper():7} {label} ({self.song_id}{target}): {self.message}"
        )


class ActivityLog:
    """Ordered, append-only collection of ActivityLogEntry"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._entries: List[ActivityLogEntry] = []
        self._clock = clock or datetime.now

    def append(
        self,
        song_name: str,
        song_id: str,
        message: str,
        status: ActivityStatus,
        match_target_id: Optional[str] = None
    ) -> ActivityLogEntry:
        """
        Append a new entry stamped with the current time

        Returns:
            The entry that was added
        """
        entry = ActivityLogEntry(
            song_name=song_name,
            song_id=song_id,
            match_target_id=match_target_id,
            message=message,
            status=status,
            timestamp=self._clock(),
        )
        self._entries.append(entry)

        # Not marked for the console; the CLI prints outcomes itself
        logger.info(f"{status.value.upper()} {song_name or song_id}: {message}")
        return entry

    @property
    def entries(self) -> Tuple[ActivityLogEntry, ...]:
        """Read-only view of all entries, oldest first"""
        return tuple(self._entries)

    def last(self) -> Optional[ActivityLogEntry]:
        return self._entries[-1] if self._entries else None

    def count(self, status: Optional[ActivityStatus] = None) -> int:
        if status is None:
            return len(self._entries)
        return sum(1 for entry in self._entries if entry.status == status)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ActivityLogEntry]:
        return iter(tuple(self._entries))
