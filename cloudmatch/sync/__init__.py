"""
Cloud drive synchronization package

This package keeps the local view of the user's NetEase cloud drive and
applies match commands to it:

1. Catalog (catalog.py):
   - CatalogSyncEngine: paginated fetch with a single in-flight guard
   - Quota bookkeeping captured once per session
   - Search and sort helpers for display

2. Match commands (matcher.py):
   - MatchEngine: re-points a cloud drive song at another catalog song
   - In-place replacement of the matched entry

3. Activity log (activity.py):
   - Append-only record of every match attempt, in completion order

Usage:

    snapshot = await catalog.fetch_page(1)
    result = await matcher.match_song("111", "222")
    for line in matcher.activity_log:
        print(line.format_line())
"""

from .activity import ActivityLog, ActivityLogEntry, ActivityStatus
from .catalog import CatalogSnapshot, CatalogSyncEngine, DEFAULT_PAGE_SIZE, SORT_KEYS
from .matcher import MatchEngine, MatchResult

__all__ = [
    # Activity log
    'ActivityLog',
    'ActivityLogEntry',
    'ActivityStatus',

    # Catalog
    'CatalogSnapshot',
    'CatalogSyncEngine',
    'DEFAULT_PAGE_SIZE',
    'SORT_KEYS',

    # Matching
    'MatchEngine',
    'MatchResult'
]
