"""Utility functions for wgexporter."""

from datetime import datetime, timezone


def format_bytes(bytes_val: float) -> str:
    """Format bytes to human readable string.

    Args:
        bytes_val: Number of bytes

    Returns:
        Formatted string like "1.23 MB"
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_val < 1024:
            return f"{bytes_val:.2f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.2f} PB"


def get_timestamp_utc() -> str:
    """Current UTC time as 2024-01-31T12:00:00Z."""
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')


def format_age(seconds: float) -> str:
    """Format an age in seconds like '42s', '5m', '3h 2m' or '2d 1h'."""
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        return f"{int(seconds // 60)}m"
    elif seconds < 86400:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
    else:
        return f"{int(seconds // 86400)}d {int((seconds % 86400) // 3600)}h"
