"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_volume(level: int) -> str:
    """Renders a volume level as a ten-cell bar."""
    bars = max(0, min(10, level // 10))
    return "█" * bars + "░" * (10 - bars)


def format_timestamp(epoch_ms: int) -> str:
    """Formats an epoch-milliseconds timestamp as a local date and time."""
    return datetime.fromtimestamp(epoch_ms / 1000).strftime("%Y-%m-%d %H:%M")


def truncate_text(text: str | None, max_length: int = 50) -> str:
    """Shortens text to `max_length`, marking the cut with an ellipsis."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
