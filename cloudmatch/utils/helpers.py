"""
Utility functions and helpers for cloudmatch
Formatting for catalog display and text matching for catalog search
"""

from datetime import datetime
from typing import Optional, Union


def format_duration(milliseconds: Union[int, float]) -> str:
    """
    Format a track duration in milliseconds to a human-readable string

    Args:
        milliseconds: Duration in milliseconds

    Returns:
        Formatted duration string, e.g. "3:45" or "1:02:03"
    """
    if milliseconds <= 0:
        return "0:00"

    seconds = int(milliseconds // 1000)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60

    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_file_size(size_bytes: Optional[int]) -> str:
    """
    Format file size in bytes to human-readable string

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string
    """
    if not size_bytes or size_bytes < 0:
        return "0 B"

    units = ['B', 'KB', 'MB', 'GB', 'TB']
    size = float(size_bytes)
    unit_index = 0

    while size >= 1024 and unit_index < len(units) - 1:
        size /= 1024
        unit_index += 1

    if unit_index == 0:
        return f"{int(size)} {units[unit_index]}"
    return f"{size:.1f} {units[unit_index]}"


def format_timestamp(timestamp: Union[str, datetime], fmt: str = '%Y-%m-%d %H:%M') -> str:
    """
    Format timestamp for display

    Args:
        timestamp: Timestamp string or datetime object
        fmt: strftime format

    Returns:
        Formatted timestamp string
    """
    if isinstance(timestamp, str):
        try:
            dt = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
        except ValueError:
            return timestamp
    else:
        dt = timestamp

    return dt.strftime(fmt)


def format_usage(used_bytes: Optional[int], capacity_bytes: Optional[int]) -> str:
    """
    Format cloud drive usage as "used / capacity"

    Unknown values are shown as "?".
    """
    used = format_file_size(used_bytes) if used_bytes is not None else "?"
    capacity = format_file_size(capacity_bytes) if capacity_bytes is not None else "?"
    return f"{used} / {capacity}"


def contains_text(haystack: Optional[str], needle: str) -> bool:
    """Case-insensitive substring test used by catalog search"""
    if not haystack:
        return False
    return needle.casefold() in haystack.casefold()


def coerce_int(value, default: Optional[int] = None) -> Optional[int]:
    """
    Convert a JSON number or numeric string to int

    The cloud drive API sends sizes sometimes as numbers and sometimes
    as strings. Booleans are rejected even though they are ints.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return default
    return default
