"""
Playback engine bindings.

A `PlaybackEngine` accepts transport commands and publishes lifecycle events on
its own `asyncio.Queue`. Each channel owns exactly one engine session, so
commands and events never cross between channels. `MpvEngine` drives a
dedicated mpv process over its JSON IPC socket.
"""

import abc
import asyncio
import json
import logging
import os
import secrets
import tempfile
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import Any

from focus_bgm.audio.types import (
    DEFAULT_VOLUME,
    EngineEvent,
    EngineEventType,
    clamp_volume,
)
from focus_bgm.exceptions import EngineError

log = logging.getLogger(__name__)


class PlaybackEngine(abc.ABC):
    """Transport commands for one isolated playback session."""

    def __init__(self) -> None:
        self.events: asyncio.Queue[EngineEvent] = asyncio.Queue()

    def emit(self, event: EngineEvent) -> None:
        self.events.put_nowait(event)

    @abc.abstractmethod
    async def load(self, source: str, mode: str = "replace") -> None:
        """Loads a URL or local file, replacing the current item by default."""

    @abc.abstractmethod
    async def play(self) -> None: ...

    @abc.abstractmethod
    async def pause(self) -> None: ...

    @abc.abstractmethod
    async def resume(self) -> None: ...

    @abc.abstractmethod
    async def stop(self) -> None: ...

    @abc.abstractmethod
    async def set_volume(self, level: int) -> None: ...

    @abc.abstractmethod
    async def seek_to_start(self) -> None: ...

    @abc.abstractmethod
    async def loop_on(self) -> None: ...

    @abc.abstractmethod
    async def loop_off(self) -> None: ...

    @abc.abstractmethod
    async def dispose(self) -> None:
        """Quits the session. Must be safe to call more than once."""


EngineFactory = Callable[[int], PlaybackEngine]

_PAUSE_OBSERVER = 1
_VOLUME_OBSERVER = 2


def translate_mpv_event(message: dict[str, Any], file_loaded: bool) -> EngineEvent | None:
    """
    Maps one mpv IPC event message onto an engine lifecycle event.

    Pause changes are only meaningful while a file is loaded: mpv reports the
    initial property value as soon as it is observed.
    """
    event = message.get("event")
    if event == "file-loaded":
        return EngineEvent(EngineEventType.STARTED)
    if event == "end-file":
        reason = message.get("reason")
        if reason == "error":
            return EngineEvent(
                EngineEventType.ERROR,
                message=message.get("file_error") or "Playback error",
            )
        if reason == "redirect":
            return None
        return EngineEvent(EngineEventType.STOPPED)
    if event == "property-change":
        name = message.get("name")
        data = message.get("data")
        if name == "pause" and file_loaded and data is not None:
            kind = EngineEventType.PAUSED if data else EngineEventType.RESUMED
            return EngineEvent(kind)
        if name == "volume" and data is not None:
            return EngineEvent(
                EngineEventType.VOLUME_CHANGED, volume=clamp_volume(float(data))
            )
    return None


class MpvEngine(PlaybackEngine):
    """
    One audio-only mpv process controlled over its JSON IPC socket.

    The process is started lazily on the first command.
    """

    def __init__(
        self,
        socket_path: Path,
        mpv_path: str = "mpv",
        initial_volume: int = DEFAULT_VOLUME,
        startup_timeout: float = 5.0,
        command_timeout: float = 10.0,
    ):
        super().__init__()
        self.socket_path = socket_path
        self.mpv_path = mpv_path
        self.initial_volume = initial_volume
        self.startup_timeout = startup_timeout
        self.command_timeout = command_timeout

        self._process: asyncio.subprocess.Process | None = None
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._next_request_id = 0
        self._start_lock = asyncio.Lock()
        self._file_loaded = False
        self._disposing = False

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def _ensure_started(self) -> None:
        async with self._start_lock:
            if self.running and self._writer is not None:
                return
            await self._reap_process()
            with suppress(FileNotFoundError):
                self.socket_path.unlink()

            args = [
                self.mpv_path,
                "--idle=yes",
                "--no-video",
                "--no-terminal",
                f"--volume={self.initial_volume}",
                f"--input-ipc-server={self.socket_path}",
            ]
            try:
                self._process = await asyncio.create_subprocess_exec(
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                )
            except OSError as e:
                raise EngineError(f"Could not start mpv: {e}") from e

            try:
                await self._connect()
            except EngineError:
                await self._reap_process()
                raise
            self._reader_task = asyncio.create_task(self._read_loop())
            log.debug(f"mpv session started on {self.socket_path}")

            await self._send("observe_property", _PAUSE_OBSERVER, "pause")
            await self._send("observe_property", _VOLUME_OBSERVER, "volume")

    async def _connect(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while True:
            if self._process.returncode is not None:
                raise EngineError(
                    f"mpv exited during startup (code {self._process.returncode})"
                )
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(
                    str(self.socket_path)
                )
                return
            except (FileNotFoundError, ConnectionRefusedError):
                if loop.time() >= deadline:
                    raise EngineError(
                        f"Timed out waiting for mpv IPC socket {self.socket_path}"
                    ) from None
                await asyncio.sleep(0.05)

    async def _reap_process(self) -> None:
        """Stops a leftover mpv whose IPC connection is gone."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return
        log.debug(f"Killing orphaned mpv on {self.socket_path}")
        with suppress(ProcessLookupError):
            process.kill()
        await process.wait()

    async def _read_loop(self) -> None:
        try:
            while line := await self._reader.readline():
                try:
                    message = json.loads(line)
                except json.JSONDecodeError:
                    log.debug(f"Ignoring malformed mpv IPC line: {line!r}")
                    continue
                self._dispatch(message)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            log.debug(f"mpv IPC connection lost: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(EngineError("mpv connection closed"))
            self._pending.clear()
            self._writer = None
            self._file_loaded = False
            if not self._disposing:
                self.emit(EngineEvent(EngineEventType.ERROR, message="mpv exited"))

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "event" not in message:
            future = self._pending.pop(message.get("request_id"), None)
            if future and not future.done():
                future.set_result(message)
            return

        if message["event"] == "file-loaded":
            self._file_loaded = True
        elif message["event"] == "end-file":
            self._file_loaded = False

        if event := translate_mpv_event(message, self._file_loaded):
            self.emit(event)

    async def _send(self, *command: Any) -> Any:
        if self._writer is None:
            raise EngineError("mpv is not connected")
        self._next_request_id += 1
        request_id = self._next_request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        payload = json.dumps({"command": list(command), "request_id": request_id})
        try:
            self._writer.write(payload.encode("utf-8") + b"\n")
            await self._writer.drain()
            reply = await asyncio.wait_for(future, timeout=self.command_timeout)
        except (ConnectionError, OSError) as e:
            raise EngineError(f"mpv command {command[0]!r} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise EngineError(f"mpv command {command[0]!r} timed out") from e
        finally:
            self._pending.pop(request_id, None)

        if reply.get("error") != "success":
            raise EngineError(f"mpv rejected {command[0]!r}: {reply.get('error')}")
        return reply.get("data")

    async def command(self, *command: Any) -> Any:
        """Sends a raw mpv IPC command, starting the session if needed."""
        await self._ensure_started()
        return await self._send(*command)

    async def load(self, source: str, mode: str = "replace") -> None:
        await self.command("loadfile", source, mode)
        await self.command("set_property", "pause", False)

    async def play(self) -> None:
        await self.command("set_property", "pause", False)

    async def pause(self) -> None:
        await self.command("set_property", "pause", True)

    async def resume(self) -> None:
        await self.command("set_property", "pause", False)

    async def stop(self) -> None:
        if not self.running:
            return
        await self.command("stop")

    async def set_volume(self, level: int) -> None:
        await self.command("set_property", "volume", clamp_volume(level))

    async def seek_to_start(self) -> None:
        await self.command("seek", 0, "absolute")

    async def loop_on(self) -> None:
        await self.command("set_property", "loop-file", "inf")

    async def loop_off(self) -> None:
        await self.command("set_property", "loop-file", "no")

    async def dispose(self) -> None:
        self._disposing = True
        try:
            await self._shutdown()
        finally:
            self._disposing = False

    async def _shutdown(self) -> None:
        if self._writer is not None:
            with suppress(EngineError):
                await asyncio.wait_for(self._send("quit"), timeout=2)
        if self._writer is not None:
            self._writer.close()
            with suppress(ConnectionError, OSError):
                await self._writer.wait_closed()
        if self._process and self._process.returncode is None:
            try:
                await asyncio.wait_for(self._process.wait(), timeout=3)
            except asyncio.TimeoutError:
                log.warning(f"mpv on {self.socket_path} did not quit, killing it.")
                with suppress(ProcessLookupError):
                    self._process.kill()
                await self._process.wait()
        if self._reader_task:
            self._reader_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._reader_task
        with suppress(FileNotFoundError):
            self.socket_path.unlink()
        self._file_loaded = False


class MpvSessionFactory:
    """
    Hands every channel its own mpv session with a private IPC socket path.

    Socket names carry the process id and a per-factory token, so several
    managers (or test runs) never collide.
    """

    def __init__(
        self,
        runtime_dir: Path | None = None,
        mpv_path: str = "mpv",
        initial_volume: int = DEFAULT_VOLUME,
    ):
        self.runtime_dir = runtime_dir or Path(tempfile.gettempdir())
        self.mpv_path = mpv_path
        self.initial_volume = initial_volume
        self._token = secrets.token_hex(4)

    def socket_path_for(self, channel_id: int) -> Path:
        name = f"focus-bgm-{os.getpid()}-{self._token}-ch{channel_id}.sock"
        return self.runtime_dir / name

    def __call__(self, channel_id: int) -> MpvEngine:
        return MpvEngine(
            self.socket_path_for(channel_id),
            mpv_path=self.mpv_path,
            initial_volume=self.initial_volume,
        )
