"""
Utilities for handling configuration paths and download filenames.
"""

import os
import re
from pathlib import Path

from pathvalidate import sanitize_filename

DEFAULT_FILENAME = "audio"
MAX_FILENAME_LENGTH = 200


def get_config_dir() -> Path:
    """Returns the per-user configuration root for the application."""
    if os.name == "nt":
        base_dir = Path(os.getenv("APPDATA", "~\\AppData\\Roaming"))
    else:
        base_dir = Path(os.getenv("XDG_CONFIG_HOME", "~/.config"))
    return base_dir.expanduser() / "focus-bgm"


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def sanitize_title(title: str, max_length: int = MAX_FILENAME_LENGTH) -> str:
    """
    Derives a filesystem-safe file stem from a display title.

    Characters that are illegal in filenames become underscores, whitespace runs
    collapse to a single underscore and the result is capped at `max_length`.
    Falls back to a generic name when nothing usable is left.
    """
    sanitized = re.sub(r'[<>:"/\\|?*]', "_", title or "")
    sanitized = re.sub(r"\s+", "_", sanitized)
    sanitized = sanitize_filename(sanitized, platform="universal")
    sanitized = sanitized[:max_length]
    return sanitized or DEFAULT_FILENAME
