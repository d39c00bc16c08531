"""
One playback channel: its engine session, download pipeline and observable state.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from focus_bgm.audio.engine import PlaybackEngine
from focus_bgm.audio.types import (
    DEFAULT_VOLUME,
    HISTORY_LIMIT,
    ChannelState,
    EngineEvent,
    EngineEventType,
    HistoryEntry,
    LibraryEntry,
    PlaybackSource,
    SourceKind,
    clamp_volume,
)
from focus_bgm.core.download_manager import DownloadManager
from focus_bgm.exceptions import (
    AlreadyDownloadingError,
    AlreadyInLibraryError,
    DownloadCancelledError,
    EngineError,
    InvalidIndexError,
    InvalidSourceError,
    LibraryFileNotFoundError,
    PlaybackError,
)

if TYPE_CHECKING:
    from focus_bgm.storage.history_db import HistoryDB
    from focus_bgm.utils.structured_logger import DownloadLogger, PlaybackLogger

log = logging.getLogger(__name__)

LOOP_INDICATOR_SECONDS = 3.0


class MetadataResolver(Protocol):
    async def resolve_title(self, url: str) -> str: ...

    def is_valid_source_url(self, url: str) -> bool: ...


class AudioChannel:
    """
    Owns one playback session's full lifecycle and observable state.

    User commands mutate state directly. Engine events arrive on the engine's
    queue and are applied by a single consumer task; while the state-lock is
    engaged they are dropped.
    """

    def __init__(
        self,
        channel_id: int,
        engine: PlaybackEngine,
        store: "HistoryDB",
        resolver: MetadataResolver,
        downloader: DownloadManager,
        default_volume: int = DEFAULT_VOLUME,
        history_limit: int = HISTORY_LIMIT,
        loop_indicator_seconds: float = LOOP_INDICATOR_SECONDS,
        clock: Callable[[], float] = time.time,
        playback_logger: "PlaybackLogger | None" = None,
        download_logger: "DownloadLogger | None" = None,
    ):
        self.engine = engine
        self.store = store
        self.resolver = resolver
        self.downloader = downloader
        self.history_limit = history_limit
        self.loop_indicator_seconds = loop_indicator_seconds
        self._clock = clock
        self._playback_logger = playback_logger
        self._download_logger = download_logger

        self._state = ChannelState(id=channel_id, volume=clamp_volume(default_volume))
        self._locked = False
        self._initialized = False
        self._event_task: asyncio.Task | None = None
        self._download_generation = 0

    @property
    def id(self) -> int:
        return self._state.id

    @property
    def state(self) -> ChannelState:
        """The live state object. Use `get_state()` for a stable snapshot."""
        return self._state

    @property
    def is_locked(self) -> bool:
        return self._locked

    async def initialize(self) -> None:
        """Seeds history and library from the store and starts consuming events."""
        if self._initialized:
            return
        self._initialized = True
        self._state.history = await self.store.get_history(
            self.id, limit=self.history_limit
        )
        self._state.library = await self.store.get_library(self.id)
        self._event_task = asyncio.create_task(self._consume_events())
        log.debug(
            f"Channel {self.id} ready: {len(self._state.history)} history, "
            f"{len(self._state.library)} library entries."
        )

    # --- Engine events ---

    async def _consume_events(self) -> None:
        while True:
            event = await self.engine.events.get()
            self.handle_event(event)

    def process_pending_events(self) -> int:
        """Applies every event queued right now. Returns how many were dequeued."""
        count = 0
        while True:
            try:
                event = self.engine.events.get_nowait()
            except asyncio.QueueEmpty:
                return count
            self.handle_event(event)
            count += 1

    def handle_event(self, event: EngineEvent) -> None:
        if self._locked:
            if self._playback_logger:
                self._playback_logger.event_dropped(self.id, event.kind.value)
            return

        state = self._state
        if event.kind is EngineEventType.STARTED:
            state.playing = True
            state.loading = False
            state.error = None
        elif event.kind is EngineEventType.PAUSED:
            state.playing = False
        elif event.kind is EngineEventType.RESUMED:
            state.playing = True
            state.loading = False
        elif event.kind is EngineEventType.STOPPED:
            state.playing = False
            state.loading = False
        elif event.kind is EngineEventType.VOLUME_CHANGED:
            if event.volume is not None:
                state.volume = clamp_volume(event.volume)
        elif event.kind is EngineEventType.ERROR:
            state.error = event.message or "Playback error"
            state.playing = False
            state.loading = False

    def set_state_lock(self, locked: bool) -> None:
        self._locked = locked

    # --- Transport ---

    def resolve_playback_source(self, url: str) -> PlaybackSource:
        """Prefers a downloaded copy of `url` whose file still exists."""
        for entry in self._state.library:
            if entry.url == url and Path(entry.file_path).is_file():
                return PlaybackSource(SourceKind.LOCAL, entry.file_path)
        return PlaybackSource(SourceKind.REMOTE, url)

    async def _stop_quietly(self) -> None:
        # nothing-was-playing is not an error
        with suppress(EngineError):
            await self.engine.stop()

    async def play(self, url: str) -> None:
        """
        Loads `url` on this channel, replacing whatever it was playing.

        Raises:
            InvalidSourceError: The URL is not a supported source.
            PlaybackError: The title could not be resolved.
            EngineError: The engine refused to load the source.
        """
        if not self.resolver.is_valid_source_url(url):
            raise InvalidSourceError(f"Invalid source URL: {url}")

        state = self._state
        state.loading = True
        state.error = None

        try:
            title = await self.resolver.resolve_title(url)
        except Exception as e:
            state.loading = False
            state.error = f"Failed to resolve title: {e}"
            if self._playback_logger:
                self._playback_logger.play_failed(self.id, url, str(e))
            raise PlaybackError(state.error) from e

        source = self.resolve_playback_source(url)
        await self._stop_quietly()
        try:
            await self.engine.load(source.location, mode="replace")
        except EngineError as e:
            state.loading = False
            state.playing = False
            state.error = f"Failed to play URL: {e}"
            if self._playback_logger:
                self._playback_logger.play_failed(self.id, url, str(e))
            raise

        state.url = url
        state.title = title
        if self._playback_logger:
            self._playback_logger.play_requested(self.id, url, title, source.kind.value)
        if source.is_local:
            log.debug(f"Channel {self.id}: playing library copy {source.location}")
        await self._record_history(url, title)

    async def _record_history(self, url: str, title: str) -> None:
        entries = [e for e in self._state.history if e.url != url]
        entries.insert(0, HistoryEntry(url=url, title=title))
        self._state.history = entries[: self.history_limit]
        await self.store.add_history_entry(self.id, url, title)

    async def pause(self) -> None:
        try:
            await self.engine.pause()
            self._state.playing = False
        except EngineError as e:
            self._state.error = f"Failed to pause: {e}"

    async def resume(self) -> None:
        try:
            await self.engine.resume()
            self._state.playing = True
        except EngineError as e:
            self._state.error = f"Failed to resume: {e}"

    async def toggle_pause(self) -> None:
        state = self._state
        if state.loading:
            await self._stop_quietly()
            state.loading = False
        elif state.playing:
            await self.pause()
        elif state.url:
            await self.resume()

    async def set_volume(self, level: float) -> None:
        clamped = clamp_volume(level)
        try:
            await self.engine.set_volume(clamped)
            self._state.volume = clamped
        except EngineError as e:
            self._state.error = f"Failed to set volume: {e}"

    async def adjust_volume(self, delta: float) -> None:
        await self.set_volume(self._state.volume + delta)

    def get_volume(self) -> int:
        return self._state.volume

    async def stop(self) -> None:
        try:
            await self.engine.stop()
            self._state.playing = False
            self._state.loading = False
        except EngineError as e:
            self._state.error = f"Failed to stop: {e}"

    async def toggle_loop(self) -> None:
        state = self._state
        try:
            if state.loop_enabled:
                await self.engine.loop_off()
                state.loop_enabled = False
                state.loop_indicator_until = None
            else:
                await self.engine.loop_on()
                state.loop_enabled = True
                state.loop_indicator_until = self._clock() + self.loop_indicator_seconds
        except EngineError as e:
            state.error = f"Failed to toggle loop: {e}"

    def loop_indicator_active(self, now: float | None = None) -> bool:
        until = self._state.loop_indicator_until
        if until is None:
            return False
        return (self._clock() if now is None else now) < until

    async def restart_playback(self) -> None:
        try:
            await self.engine.seek_to_start()
        except EngineError as e:
            self._state.error = f"Failed to restart: {e}"
            raise

    # --- Downloads ---

    async def start_download(self, url: str, title: str) -> LibraryEntry:
        """
        Downloads `url` into this channel's library.

        Raises:
            AlreadyDownloadingError: A download is already running here.
            AlreadyInLibraryError: The URL was downloaded before.
            DownloadCancelledError: `cancel_download()` was called meanwhile.
            DownloadError: The download pipeline failed.
        """
        state = self._state
        if state.downloading:
            raise AlreadyDownloadingError("Already downloading")

        # Reserve the slot before the first suspension point.
        state.downloading = True
        reserved = self._download_generation
        try:
            in_library = await self.store.is_in_library(self.id, url)
        except Exception:
            if reserved == self._download_generation:
                state.downloading = False
            raise
        if reserved != self._download_generation:
            if self._download_logger:
                self._download_logger.download_cancelled(self.id, url)
            raise DownloadCancelledError("Download cancelled")
        if in_library:
            state.downloading = False
            raise AlreadyInLibraryError("Already in library")

        self._download_generation += 1
        generation = self._download_generation
        state.download_progress = 0.0
        started = time.monotonic()
        if self._download_logger:
            self._download_logger.download_started(self.id, url, title)

        def on_progress(progress: float) -> None:
            if generation == self._download_generation:
                state.download_progress = progress

        try:
            result = await self.downloader.download(url, title, on_progress)
            if generation != self._download_generation:
                self.downloader.delete_file(result.file_path)
                raise DownloadCancelledError("Download cancelled")

            entry = LibraryEntry(
                url=url,
                title=title,
                file_path=result.file_path,
                file_size=result.file_size,
                downloaded_at=int(time.time() * 1000),
            )
            await self.store.add_library_entry(self.id, entry)
            state.library = [entry] + [e for e in state.library if e.url != url]
        except DownloadCancelledError:
            if self._download_logger:
                self._download_logger.download_cancelled(self.id, url)
            raise
        except Exception as e:
            if generation == self._download_generation:
                state.error = str(e)
            if self._download_logger:
                self._download_logger.download_failed(
                    self.id, url, str(e), getattr(e, "exit_code", None)
                )
            raise
        finally:
            if generation == self._download_generation:
                state.downloading = False
                state.download_progress = 0.0

        if self._download_logger:
            self._download_logger.download_completed(
                self.id, url, entry.file_path, entry.file_size, time.monotonic() - started
            )
        return entry

    def cancel_download(self) -> bool:
        """Cancels the running download, resetting flags immediately."""
        if not self._state.downloading:
            return False
        self.downloader.cancel()
        self._download_generation += 1
        self._state.downloading = False
        self._state.download_progress = 0.0
        return True

    # --- Library ---

    def get_library(self) -> list[LibraryEntry]:
        return list(self._state.library)

    async def play_from_library(self, index: int) -> None:
        """
        Plays a downloaded file directly, skipping metadata lookup and URL checks.

        Raises:
            InvalidIndexError: `index` is out of range.
            LibraryFileNotFoundError: The backing file is gone.
            EngineError: The engine refused to load the file.
        """
        library = self._state.library
        if not 0 <= index < len(library):
            raise InvalidIndexError("Invalid library index")
        entry = library[index]
        if not Path(entry.file_path).is_file():
            raise LibraryFileNotFoundError(f"File not found: {entry.file_path}")

        state = self._state
        state.loading = True
        state.error = None
        await self._stop_quietly()
        try:
            await self.engine.load(entry.file_path, mode="replace")
        except EngineError as e:
            state.loading = False
            state.playing = False
            state.error = f"Failed to play file: {e}"
            raise
        state.url = entry.url
        state.title = entry.title

    async def remove_from_library(self, index: int) -> LibraryEntry | None:
        """Removes a library entry and its file. Out-of-range indexes are ignored."""
        library = self._state.library
        if not 0 <= index < len(library):
            return None
        entry = library[index]
        await self.store.remove_library_entry(self.id, entry.url)
        self.downloader.delete_file(entry.file_path)
        self._state.library = [e for e in self._state.library if e is not entry]
        return entry

    # --- History & state ---

    def get_history(self) -> list[HistoryEntry]:
        return list(self._state.history)

    async def clear_history(self) -> None:
        await self.store.clear_history(self.id)
        self._state.history = []

    def clear_error(self) -> None:
        self._state.error = None

    def get_url(self) -> str | None:
        return self._state.url

    def get_title(self) -> str | None:
        return self._state.title

    def is_playing(self) -> bool:
        return self._state.playing

    def is_loading(self) -> bool:
        return self._state.loading

    def get_error(self) -> str | None:
        return self._state.error

    def get_state(self) -> ChannelState:
        return self._state.snapshot()

    async def dispose(self) -> None:
        """Quiesces the engine. History and library are left untouched."""
        if self._event_task:
            self._event_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._event_task
            self._event_task = None
        self.cancel_download()
        try:
            await self.engine.dispose()
        except Exception as e:
            log.error(f"Error disposing engine for channel {self.id}: {e}")
        self._state.playing = False
        self._state.loading = False
        self._initialized = False
