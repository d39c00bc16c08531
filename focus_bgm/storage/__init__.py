"""
Storage Layer.

This package handles all data persistence: the configuration file and the
per-channel history and library database.
"""

from .config_manager import ConfigManager
from .history_db import HistoryDB

__all__ = ["ConfigManager", "HistoryDB"]
