"""
Coordinates the two playback channels.

The manager owns both `AudioChannel` instances, tracks which one is active and
routes every operation to either an explicitly named channel or the active one.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from focus_bgm.audio.channel import AudioChannel, MetadataResolver
from focus_bgm.audio.engine import EngineFactory
from focus_bgm.audio.types import (
    CHANNEL_COUNT,
    ChannelState,
    HistoryEntry,
    LibraryEntry,
)
from focus_bgm.core.download_manager import DownloadManager
from focus_bgm.exceptions import InvalidIndexError, NothingLoadedError
from focus_bgm.models.config import PlayerConfig

if TYPE_CHECKING:
    from focus_bgm.storage.history_db import HistoryDB
    from focus_bgm.utils.structured_logger import DownloadLogger, PlaybackLogger

log = logging.getLogger(__name__)

DownloaderFactory = Callable[[int], DownloadManager]


class ChannelManager:
    """Owns exactly two channels and the manager-wide state-lock."""

    def __init__(
        self,
        store: "HistoryDB",
        resolver: MetadataResolver,
        engine_factory: EngineFactory,
        downloader_factory: DownloaderFactory,
        config: PlayerConfig | None = None,
        playback_logger: "PlaybackLogger | None" = None,
        download_logger: "DownloadLogger | None" = None,
    ):
        self.store = store
        self.config = config or PlayerConfig()
        self.channels: tuple[AudioChannel, ...] = tuple(
            AudioChannel(
                channel_id,
                engine=engine_factory(channel_id),
                store=store,
                resolver=resolver,
                downloader=downloader_factory(channel_id),
                default_volume=self.config.default_volume,
                history_limit=self.config.history_limit,
                loop_indicator_seconds=self.config.loop_indicator_seconds,
                playback_logger=playback_logger,
                download_logger=download_logger,
            )
            for channel_id in range(CHANNEL_COUNT)
        )
        self._active_channel_index = 0
        self._state_locked = False

    async def initialize(self) -> None:
        await asyncio.gather(*(channel.initialize() for channel in self.channels))

    # --- Selection ---

    def _resolve_index(self, index: int | None) -> int:
        if index is None:
            return self._active_channel_index
        if index not in range(CHANNEL_COUNT):
            raise InvalidIndexError(f"Invalid channel index: {index}")
        return index

    def get_channel(self, index: int | None = None) -> AudioChannel:
        return self.channels[self._resolve_index(index)]

    def get_active_channel(self) -> AudioChannel:
        return self.channels[self._active_channel_index]

    def set_active_channel(self, index: int) -> None:
        self._active_channel_index = self._resolve_index(index)

    def get_active_channel_index(self) -> int:
        return self._active_channel_index

    def toggle_active_channel(self) -> None:
        self._active_channel_index = (self._active_channel_index + 1) % CHANNEL_COUNT

    # --- State-lock ---

    def lock_state(self) -> None:
        """Suppresses engine-driven state updates on both channels."""
        self._state_locked = True
        for channel in self.channels:
            channel.set_state_lock(True)

    def unlock_state(self) -> None:
        self._state_locked = False
        for channel in self.channels:
            channel.set_state_lock(False)

    def is_state_locked(self) -> bool:
        return self._state_locked

    def process_pending_events(self) -> int:
        return sum(channel.process_pending_events() for channel in self.channels)

    # --- Transport ---

    async def play_on_channel(self, index: int, url: str) -> None:
        channel = self.get_channel(index)
        await channel.play(url)
        # A failure from an earlier attempt must not linger after a success.
        channel.clear_error()

    def play_from_history(self, index: int, history_index: int) -> str | None:
        """Looks up a history URL without starting playback."""
        history = self.get_channel(index).get_history()
        if 0 <= history_index < len(history):
            return history[history_index].url
        return None

    async def toggle_pause(self, index: int | None = None) -> None:
        await self.get_channel(index).toggle_pause()

    async def pause(self, index: int | None = None) -> None:
        await self.get_channel(index).pause()

    async def resume(self, index: int | None = None) -> None:
        await self.get_channel(index).resume()

    async def stop(self, index: int | None = None) -> None:
        await self.get_channel(index).stop()

    async def set_volume(self, level: int, index: int | None = None) -> None:
        await self.get_channel(index).set_volume(level)

    async def adjust_volume(self, delta: int, index: int | None = None) -> None:
        await self.get_channel(index).adjust_volume(delta)

    async def volume_up(self, index: int | None = None) -> None:
        """Raises the volume by the configured `volume_step`."""
        await self.adjust_volume(self.config.volume_step, index)

    async def volume_down(self, index: int | None = None) -> None:
        await self.adjust_volume(-self.config.volume_step, index)

    async def toggle_loop(self, index: int | None = None) -> None:
        await self.get_channel(index).toggle_loop()

    async def restart_playback(self, index: int | None = None) -> None:
        await self.get_channel(index).restart_playback()

    # --- Downloads ---

    async def start_download(
        self, url: str, title: str, index: int | None = None
    ) -> LibraryEntry:
        return await self.get_channel(index).start_download(url, title)

    async def download_current(self, index: int | None = None) -> LibraryEntry:
        """Downloads whatever the channel currently has loaded."""
        channel = self.get_channel(index)
        url, title = channel.get_url(), channel.get_title()
        if not url or not title:
            raise NothingLoadedError("No track playing")
        return await channel.start_download(url, title)

    def cancel_download(self, index: int | None = None) -> bool:
        return self.get_channel(index).cancel_download()

    # --- Library & history ---

    def get_library(self, index: int | None = None) -> list[LibraryEntry]:
        return self.get_channel(index).get_library()

    async def play_from_library(
        self, library_index: int, index: int | None = None
    ) -> None:
        await self.get_channel(index).play_from_library(library_index)

    async def remove_from_library(
        self, library_index: int, index: int | None = None
    ) -> LibraryEntry | None:
        return await self.get_channel(index).remove_from_library(library_index)

    def get_history(self, index: int | None = None) -> list[HistoryEntry]:
        return self.get_channel(index).get_history()

    async def clear_history(self, index: int | None = None) -> None:
        await self.get_channel(index).clear_history()

    # --- State ---

    def get_channel_state(self, index: int) -> ChannelState:
        return self.get_channel(index).get_state()

    def get_all_states(self) -> tuple[ChannelState, ...]:
        return tuple(channel.get_state() for channel in self.channels)

    async def cleanup(self) -> None:
        """Disposes both engine sessions concurrently, then closes the store."""
        results = await asyncio.gather(
            *(channel.dispose() for channel in self.channels), return_exceptions=True
        )
        for channel, result in zip(self.channels, results):
            if isinstance(result, Exception):
                log.error(f"Error disposing channel {channel.id}: {result}")
        try:
            self.store.close()
        except Exception as e:
            log.error(f"Error closing history store: {e}")
