"""
Event-style logging: every record is an event name plus keyword context.

Records go to the regular `logging` tree (rendered by the CLI's RichHandler)
and, when a log directory is given, to a JSON-lines file for later analysis.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import IO, Any


class StructuredLogger:
    """
    Usage:
        logger = StructuredLogger("focus_bgm", log_dir=Path("logs"))
        logger.info("download_completed", channel=0, size_mb=4.2)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        self.name = name
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console
        self._logger = logging.getLogger(name)
        self._context: dict[str, Any] = {"session_id": f"{time.time_ns():x}"}

        self.json_log_path: Path | None = None
        self._sink: IO[str] | None = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"focus_bgm_{stamp}.jsonl"
            self._sink = self.json_log_path.open("a", encoding="utf-8")

    def set_session_context(self, **kwargs) -> None:
        """Adds fields that are attached to every following JSON record."""
        self._context.update(kwargs)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            fields = " ".join(f"{key}={value}" for key, value in context.items())
            self._logger.log(level, f"[{event}] {fields}".rstrip())
        if self._sink is None or self._sink.closed:
            return
        record = {
            "timestamp": datetime.now().isoformat(),
            "level": logging.getLevelName(level),
            "event": event,
            **self._context,
            **context,
        }
        try:
            self._sink.write(json.dumps(record, default=str) + "\n")
            self._sink.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        if self._sink is not None and not self._sink.closed:
            self._sink.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class PlaybackLogger:
    """Playback events of a channel."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def play_requested(self, channel: int, url: str, title: str, source_kind: str):
        self.logger.info(
            "play_requested", channel=channel, url=url, title=title, source=source_kind
        )

    def play_failed(self, channel: int, url: str, error: str):
        self.logger.error("play_failed", channel=channel, url=url, error=error)

    def event_dropped(self, channel: int, event: str):
        """An engine event arrived while the state-lock was engaged."""
        self.logger.debug("engine_event_dropped", channel=channel, event=event)


class DownloadLogger:
    """Download pipeline events of a channel."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def download_started(self, channel: int, url: str, title: str):
        self.logger.info("download_started", channel=channel, url=url, title=title)

    def download_completed(
        self, channel: int, url: str, file_path: str, size_bytes: int, duration_s: float
    ):
        self.logger.info(
            "download_completed",
            channel=channel,
            url=url,
            file_path=file_path,
            size_mb=round(size_bytes / (1024 * 1024), 2),
            duration_s=round(duration_s, 2),
        )

    def download_failed(
        self, channel: int, url: str, error: str, exit_code: int | None = None
    ):
        self.logger.error(
            "download_failed", channel=channel, url=url, error=error, exit_code=exit_code
        )

    def download_cancelled(self, channel: int, url: str):
        self.logger.warning("download_cancelled", channel=channel, url=url)


class SessionLogger:
    """Start and end of a CLI session."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, command: str, active_channel: int):
        self.logger.set_session_context(command=command)
        self.logger.info("session_started", active_channel=active_channel)

    def session_ended(self, duration_s: float):
        self.logger.info("session_ended", duration_s=round(duration_s, 2))


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, PlaybackLogger, DownloadLogger, SessionLogger]:
    """Returns (base, playback, download, session) loggers sharing one sink."""
    base = StructuredLogger("focus_bgm", log_dir=log_dir, enable_json=enable_json)
    return base, PlaybackLogger(base), DownloadLogger(base), SessionLogger(base)
