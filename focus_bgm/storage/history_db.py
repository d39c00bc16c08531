"""
Manages the SQLite database holding per-channel play history and the download library.
"""

import asyncio
import logging
import sqlite3
import time
from pathlib import Path

from focus_bgm.audio.types import HISTORY_LIMIT, HistoryEntry, LibraryEntry

log = logging.getLogger(__name__)


class HistoryDB:
    """
    SQLite store for history and library rows, partitioned by channel id.

    Every public coroutine runs its query in a worker thread with its own
    connection, so the event loop never blocks on disk I/O.
    """

    def __init__(self, config_dir_path: Path):
        config_dir_path.mkdir(parents=True, exist_ok=True)
        self.db_path = config_dir_path / "history.db"
        self._lock = asyncio.Lock()
        self._closed = False
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with optimized PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            log.error(f"Failed to connect to history database: {e}")
            raise

    def _initialize_db(self) -> None:
        """Creates the tables and indexes if they don't exist."""
        with self._get_connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    title TEXT NOT NULL,
                    played_at INTEGER NOT NULL,
                    UNIQUE(channel_id, url)
                );
                CREATE INDEX IF NOT EXISTS idx_channel_id ON history(channel_id);

                CREATE TABLE IF NOT EXISTS library (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id INTEGER NOT NULL,
                    url TEXT NOT NULL,
                    title TEXT NOT NULL,
                    file_path TEXT NOT NULL,
                    file_size INTEGER NOT NULL,
                    downloaded_at INTEGER NOT NULL,
                    UNIQUE(channel_id, url)
                );
                CREATE INDEX IF NOT EXISTS idx_library_channel ON library(channel_id);
                """
            )

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function in a worker thread, one at a time."""
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    # --- History ---

    def _add_history_sync(self, channel_id: int, url: str, title: str) -> None:
        # played_at is in nanoseconds so rapid successive plays keep their order
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO history (channel_id, url, title, played_at) "
                "VALUES (?, ?, ?, ?)",
                (channel_id, url, title, time.time_ns()),
            )

    async def add_history_entry(self, channel_id: int, url: str, title: str) -> None:
        """Records a play, moving an existing row for the same URL to the front."""
        await self._run_in_executor(self._add_history_sync, channel_id, url, title)

    def _get_history_sync(self, channel_id: int, limit: int) -> list[HistoryEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT url, title FROM history WHERE channel_id = ? "
                "ORDER BY played_at DESC LIMIT ?",
                (channel_id, limit),
            ).fetchall()
        return [HistoryEntry(url=url, title=title) for url, title in rows]

    async def get_history(
        self, channel_id: int, limit: int = HISTORY_LIMIT
    ) -> list[HistoryEntry]:
        """Returns the most recent history entries for a channel, newest first."""
        return await self._run_in_executor(self._get_history_sync, channel_id, limit)

    def _clear_history_sync(self, channel_id: int) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM history WHERE channel_id = ?", (channel_id,))

    async def clear_history(self, channel_id: int) -> None:
        await self._run_in_executor(self._clear_history_sync, channel_id)

    # --- Library ---

    def _add_library_sync(self, channel_id: int, entry: LibraryEntry) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO library "
                "(channel_id, url, title, file_path, file_size, downloaded_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    channel_id,
                    entry.url,
                    entry.title,
                    entry.file_path,
                    entry.file_size,
                    entry.downloaded_at,
                ),
            )

    async def add_library_entry(self, channel_id: int, entry: LibraryEntry) -> None:
        await self._run_in_executor(self._add_library_sync, channel_id, entry)

    def _get_library_sync(self, channel_id: int) -> list[LibraryEntry]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT url, title, file_path, file_size, downloaded_at FROM library "
                "WHERE channel_id = ? ORDER BY downloaded_at DESC, id DESC",
                (channel_id,),
            ).fetchall()
        return [LibraryEntry(*row) for row in rows]

    async def get_library(self, channel_id: int) -> list[LibraryEntry]:
        """Returns a channel's downloaded items, most recent first."""
        return await self._run_in_executor(self._get_library_sync, channel_id)

    def _get_library_entry_sync(self, channel_id: int, url: str) -> LibraryEntry | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT url, title, file_path, file_size, downloaded_at FROM library "
                "WHERE channel_id = ? AND url = ?",
                (channel_id, url),
            ).fetchone()
        return LibraryEntry(*row) if row else None

    async def get_library_entry(self, channel_id: int, url: str) -> LibraryEntry | None:
        return await self._run_in_executor(
            self._get_library_entry_sync, channel_id, url
        )

    def _remove_library_sync(self, channel_id: int, url: str) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM library WHERE channel_id = ? AND url = ?",
                (channel_id, url),
            )

    async def remove_library_entry(self, channel_id: int, url: str) -> None:
        await self._run_in_executor(self._remove_library_sync, channel_id, url)

    async def is_in_library(self, channel_id: int, url: str) -> bool:
        return await self.get_library_entry(channel_id, url) is not None

    def close(self) -> None:
        """Marks the store closed. Connections are per call, so nothing stays open."""
        if not self._closed:
            self._closed = True
            log.debug(f"History database '{self.db_path}' closed.")
