from __future__ import annotations

import asyncio
import os
import shutil
import sys
import tempfile
from pathlib import Path

import pytest
from fakes import build_channel

from focus_bgm.audio.engine import MpvEngine, MpvSessionFactory, translate_mpv_event
from focus_bgm.audio.types import EngineEvent, EngineEventType


def test_file_loaded_and_end_file() -> None:
    assert translate_mpv_event({"event": "file-loaded"}, False) == EngineEvent(
        EngineEventType.STARTED
    )
    assert translate_mpv_event(
        {"event": "end-file", "reason": "eof"}, True
    ) == EngineEvent(EngineEventType.STOPPED)
    assert translate_mpv_event(
        {"event": "end-file", "reason": "stop"}, True
    ) == EngineEvent(EngineEventType.STOPPED)
    assert translate_mpv_event({"event": "end-file", "reason": "redirect"}, True) is None


def test_end_file_error_carries_message() -> None:
    event = translate_mpv_event(
        {"event": "end-file", "reason": "error", "file_error": "loading failed"}, True
    )
    assert event == EngineEvent(EngineEventType.ERROR, message="loading failed")

    fallback = translate_mpv_event({"event": "end-file", "reason": "error"}, True)
    assert fallback.message == "Playback error"


def test_pause_changes_need_a_loaded_file() -> None:
    paused = {"event": "property-change", "name": "pause", "data": True}
    resumed = {"event": "property-change", "name": "pause", "data": False}

    assert translate_mpv_event(paused, False) is None
    assert translate_mpv_event(paused, True).kind is EngineEventType.PAUSED
    assert translate_mpv_event(resumed, True).kind is EngineEventType.RESUMED


def test_volume_change_is_clamped() -> None:
    event = translate_mpv_event(
        {"event": "property-change", "name": "volume", "data": 130.0}, False
    )
    assert event == EngineEvent(EngineEventType.VOLUME_CHANGED, volume=100)
    assert translate_mpv_event({"event": "idle"}, False) is None
    assert translate_mpv_event(
        {"event": "property-change", "name": "volume", "data": None}, False
    ) is None


def test_session_factory_gives_each_channel_its_own_socket(tmp_path) -> None:
    factory = MpvSessionFactory(runtime_dir=tmp_path, mpv_path="/opt/mpv")
    first, second = factory(0), factory(1)

    assert first.socket_path != second.socket_path
    assert first.socket_path.parent == Path(tmp_path)
    assert first.mpv_path == "/opt/mpv"
    assert first.events is not second.events
    assert MpvSessionFactory(runtime_dir=tmp_path).socket_path_for(0) != (
        factory.socket_path_for(0)
    )


# Stand-in for mpv: serves the IPC socket, acknowledges every command and
# exits abruptly once playback of the first file is confirmed.
_FAKE_MPV = """
import json
import os
import socket
import sys

path = next(a.split("=", 1)[1] for a in sys.argv if a.startswith("--input-ipc-server="))
server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
server.bind(path)
server.listen(1)
conn, _ = server.accept()
stream = conn.makefile("rwb")
loaded = False
for raw in stream:
    message = json.loads(raw)
    command = message["command"]
    reply = {"request_id": message["request_id"], "error": "success", "data": None}
    stream.write(json.dumps(reply).encode() + b"\\n")
    stream.flush()
    if command[0] == "quit":
        break
    if command[0] == "loadfile":
        loaded = True
    elif loaded and command[:2] == ["set_property", "pause"]:
        stream.write(b'{"event": "file-loaded"}\\n')
        stream.flush()
        os._exit(1)
"""


@pytest.mark.skipif(os.name == "nt", reason="mpv IPC uses unix sockets")
def test_mpv_exit_surfaces_as_channel_error(tmp_path) -> None:
    script = tmp_path / "mpv"
    script.write_text(f"#!{sys.executable}\n{_FAKE_MPV}", encoding="utf-8")
    script.chmod(0o755)
    # unix socket paths are length limited, keep them out of tmp_path
    runtime = Path(tempfile.mkdtemp(prefix="fbgm-"))

    async def scenario() -> None:
        engine = MpvEngine(runtime / "ch0.sock", mpv_path=str(script))
        channel = build_channel(tmp_path, engine=engine)

        await channel.play("https://service/x")
        loop = asyncio.get_running_loop()
        deadline = loop.time() + 10
        while channel.get_error() is None:
            assert loop.time() < deadline
            channel.process_pending_events()
            await asyncio.sleep(0.02)

        assert channel.get_error() == "mpv exited"
        assert channel.is_playing() is False
        assert channel.is_loading() is False

        # the next command starts a fresh session instead of failing
        await channel.set_volume(30)
        assert engine.running is True
        assert channel.get_volume() == 30

        channel.process_pending_events()
        await engine.dispose()
        assert engine.running is False
        assert engine.events.empty()

    try:
        asyncio.run(scenario())
    finally:
        shutil.rmtree(runtime, ignore_errors=True)
