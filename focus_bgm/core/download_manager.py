"""
Supervises the external downloader (yt-dlp) for one channel.

Each call to `download` launches one subprocess, streams its output through a
single progress parser and resolves the extracted audio file once the process
exits successfully.
"""

import asyncio
import logging
import os
import re
import signal
from collections import deque
from collections.abc import Callable, Sequence
from contextlib import suppress
from dataclasses import dataclass
from pathlib import Path

from focus_bgm.exceptions import (
    DownloadCancelledError,
    DownloadError,
    DownloadFailedError,
    DownloadFilesystemError,
    SourceBlockedError,
)
from focus_bgm.utils.path import MAX_FILENAME_LENGTH, create_dir, sanitize_title

log = logging.getLogger(__name__)

PROGRESS_PATTERN = re.compile(r"\[download\]\s+(\d+(?:\.\d+)?)%")
AUDIO_EXTENSIONS = (".webm", ".m4a", ".mp3", ".opus", ".ogg", ".flac", ".wav", ".aac")

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class DownloadResult:
    file_path: str
    file_size: int


def parse_progress(line: str) -> float | None:
    """Extracts the percentage from a downloader progress line, if present."""
    match = PROGRESS_PATTERN.search(line)
    if match:
        return min(100.0, float(match.group(1)))
    return None


def classify_exit_code(code: int) -> DownloadError:
    """Builds the exception describing a non-zero downloader exit code."""
    if code == 1:
        return DownloadFailedError("Generic download error - try again", exit_code=code)
    if code == 2:
        return SourceBlockedError(
            "Source blocked the download (HTTP 403) - try again or use a "
            "different source",
            exit_code=code,
        )
    if code == 3:
        return DownloadFilesystemError(
            "File system error - check disk space and permissions", exit_code=code
        )
    return DownloadError(f"Download failed (code: {code})", exit_code=code)


class DownloadManager:
    """Runs one downloader subprocess at a time for a single channel."""

    def __init__(
        self,
        channel_id: int,
        config_dir: Path,
        command: Sequence[str] = ("yt-dlp",),
        extra_args: Sequence[str] = (),
        progress_interval: float = 0.5,
        max_title_length: int = MAX_FILENAME_LENGTH,
    ):
        """
        Args:
            channel_id: Channel this manager downloads for.
            config_dir: Per-user configuration root; downloads go below it.
            command: Downloader executable, possibly with leading arguments.
            extra_args: Additional arguments appended to every invocation.
            progress_interval: Seconds of output silence after which the last
                known progress is re-emitted.
            max_title_length: Cap for the sanitized file stem.
        """
        self.channel_id = channel_id
        self.downloads_dir = config_dir / f"downloads-channel-{channel_id}"
        self.command = list(command)
        self.extra_args = list(extra_args)
        self.progress_interval = progress_interval
        self.max_title_length = max_title_length

        self._process: asyncio.subprocess.Process | None = None
        self._cancelled: set[int] = set()

    @property
    def active(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def sanitize_filename(self, title: str) -> str:
        return sanitize_title(title, self.max_title_length)

    def build_args(self, url: str, output_template: str) -> list[str]:
        return [
            *self.command,
            url,
            "-x",
            "--audio-format",
            "best",
            "--prefer-free-formats",
            "--no-overwrites",
            "--newline",
            "-o",
            output_template,
            *self.extra_args,
        ]

    async def download(
        self, url: str, title: str, on_progress: ProgressCallback
    ) -> DownloadResult:
        """
        Downloads the audio of `url` into this channel's download directory.

        Raises:
            DownloadCancelledError: `cancel()` was called while running.
            DownloadError: Launch failure, non-zero exit (classified by exit
                code) or no matching file after a successful exit.
        """
        stem = self.sanitize_filename(title)
        try:
            create_dir(self.downloads_dir)
        except OSError as e:
            raise DownloadError(f"Download error: {e}") from e
        output_template = str(self.downloads_dir / f"{stem}.%(ext)s")
        args = self.build_args(url, output_template)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                start_new_session=os.name != "nt",
            )
        except OSError as e:
            log.debug(f"Could not launch downloader {args[0]!r}: {e}")
            raise DownloadError(f"Download error: {e}") from e

        self._process = process
        log.debug(f"Channel {self.channel_id}: downloader started for {url}")
        try:
            tail = await self._pump_output(process.stdout, on_progress)
            code = await process.wait()
        finally:
            if self._process is process:
                self._process = None

        if process.pid in self._cancelled:
            self._cancelled.discard(process.pid)
            raise DownloadCancelledError("Download cancelled")
        if code != 0:
            error = classify_exit_code(code)
            if tail:
                log.debug("Downloader output before failure:\n" + "\n".join(tail))
            raise error

        return await asyncio.to_thread(self._find_downloaded_file, stem)

    async def _pump_output(
        self, stream: asyncio.StreamReader, on_progress: ProgressCallback
    ) -> list[str]:
        """
        Reads merged downloader output until EOF, reporting progress.

        Progress never moves backwards. During output silence the last known
        value is re-emitted every `progress_interval` seconds.
        """
        tail: deque[str] = deque(maxlen=20)
        last_progress: float | None = None
        while True:
            try:
                raw = await asyncio.wait_for(
                    stream.readline(), timeout=self.progress_interval
                )
            except asyncio.TimeoutError:
                if last_progress is not None:
                    on_progress(last_progress)
                continue
            if not raw:
                return list(tail)

            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            tail.append(line)
            progress = parse_progress(line)
            if progress is not None and (
                last_progress is None or progress >= last_progress
            ):
                last_progress = progress
                on_progress(progress)

    def _find_downloaded_file(self, stem: str) -> DownloadResult:
        try:
            candidates = [
                path
                for path in self.downloads_dir.iterdir()
                if path.is_file()
                and path.name.startswith(stem)
                and path.suffix.lower() in AUDIO_EXTENSIONS
            ]
            if not candidates:
                raise DownloadError("Downloaded file not found")
            newest = max(candidates, key=lambda p: p.stat().st_mtime)
            return DownloadResult(file_path=str(newest), file_size=newest.stat().st_size)
        except OSError as e:
            raise DownloadError(f"Failed to verify download: {e}") from e

    def cancel(self) -> bool:
        """
        Terminates the running downloader, including any helper processes it
        spawned. Returns False when nothing was running.
        """
        process = self._process
        if process is None or process.returncode is not None:
            return False
        self._cancelled.add(process.pid)
        with suppress(ProcessLookupError):
            if os.name != "nt":
                os.killpg(process.pid, signal.SIGTERM)
            else:
                process.terminate()
        log.debug(f"Channel {self.channel_id}: downloader terminated on request")
        return True

    def delete_file(self, file_path: str) -> None:
        """Best-effort removal of a downloaded file."""
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as e:
            log.warning(f"[yellow]Could not delete '{file_path}': {e}[/yellow]")
