from __future__ import annotations

import asyncio

import pytest
from fakes import build_manager

from focus_bgm.audio.types import EngineEvent, EngineEventType
from focus_bgm.exceptions import InvalidIndexError, NothingLoadedError
from focus_bgm.models.config import PlayerConfig

URL = "https://service/x"


def test_active_channel_selection(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        assert manager.get_active_channel_index() == 0

        manager.toggle_active_channel()
        assert manager.get_active_channel_index() == 1
        manager.toggle_active_channel()
        assert manager.get_active_channel_index() == 0

        manager.set_active_channel(1)
        assert manager.get_active_channel() is manager.channels[1]

        with pytest.raises(InvalidIndexError):
            manager.set_active_channel(2)
        with pytest.raises(InvalidIndexError):
            manager.get_channel(-1)
        assert manager.get_active_channel_index() == 1

    asyncio.run(scenario())


def test_operations_route_to_active_channel(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        manager.set_active_channel(1)

        await manager.set_volume(25)
        await manager.adjust_volume(-5)
        await manager.toggle_loop()

        first, second = manager.get_all_states()
        assert first.volume == 80
        assert second.volume == 20
        assert second.loop_enabled is True
        assert manager.channels[0].engine.calls == []

        await manager.set_volume(55, index=0)
        assert manager.get_channel_state(0).volume == 55

    asyncio.run(scenario())


def test_state_lock_covers_both_channels(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        manager.lock_state()
        assert manager.is_state_locked() is True
        assert all(channel.is_locked for channel in manager.channels)

        await manager.play_on_channel(0, URL)
        await manager.play_on_channel(1, "https://service/y")
        assert manager.process_pending_events() == 2
        assert not any(state.playing for state in manager.get_all_states())

        manager.unlock_state()
        assert manager.is_state_locked() is False
        for channel in manager.channels:
            channel.engine.emit(EngineEvent(EngineEventType.STARTED))
        manager.process_pending_events()
        assert all(state.playing for state in manager.get_all_states())

    asyncio.run(scenario())


def test_engine_events_stay_on_their_channel(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        first, second = manager.channels

        first.engine.emit(EngineEvent(EngineEventType.STARTED))
        first.engine.emit(EngineEvent(EngineEventType.ERROR, message="decoder died"))
        assert manager.process_pending_events() == 2

        assert first.get_error() == "decoder died"
        assert first.is_playing() is False
        assert second.is_playing() is False
        assert second.is_loading() is False
        assert second.get_error() is None

    asyncio.run(scenario())


def test_volume_steps_follow_config(tmp_path) -> None:
    async def scenario() -> None:
        config = PlayerConfig(default_volume=50, volume_step=15)
        manager = build_manager(tmp_path, config=config)

        await manager.volume_up()
        assert manager.get_channel_state(0).volume == 65
        await manager.volume_down(index=1)
        await manager.volume_down(index=1)
        assert manager.get_channel_state(1).volume == 20

        for _ in range(4):
            await manager.volume_up()
        assert manager.get_channel_state(0).volume == 100
        assert manager.channels[0].engine.calls[-1] == ("set_volume", 100)

    asyncio.run(scenario())


def test_play_on_channel_clears_previous_error(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        channel = manager.get_channel(0)
        channel.state.error = "old failure"

        await manager.play_on_channel(0, URL)
        assert channel.get_error() is None

    asyncio.run(scenario())


def test_play_from_history_returns_url(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        assert manager.play_from_history(0, 0) is None

        await manager.play_on_channel(0, URL)
        assert manager.play_from_history(0, 0) == URL
        assert manager.play_from_history(0, 1) is None
        assert manager.play_from_history(1, 0) is None
        assert manager.get_history(0)[0].url == URL

        await manager.clear_history(0)
        assert manager.get_history(0) == []

    asyncio.run(scenario())


def test_download_current(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path, titles={URL: "Song A"})

        with pytest.raises(NothingLoadedError, match="No track playing"):
            await manager.download_current(0)

        await manager.play_on_channel(0, URL)
        entry = await manager.download_current(0)
        assert entry.title == "Song A"
        assert manager.get_library(0) == [entry]
        assert manager.get_library(1) == []
        assert manager.cancel_download(0) is False

        await manager.play_from_library(0, index=0)
        removed = await manager.remove_from_library(0, index=0)
        assert removed == entry

    asyncio.run(scenario())


def test_cleanup_disposes_all_channels(tmp_path) -> None:
    async def scenario() -> None:
        manager = build_manager(tmp_path)
        await manager.initialize()
        await manager.play_on_channel(0, URL)

        await manager.cleanup()
        assert [channel.engine.disposed for channel in manager.channels] == [1, 1]
        assert manager.get_history(0)[0].url == URL

    asyncio.run(scenario())
