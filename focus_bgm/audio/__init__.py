"""
Channel Layer.

This package holds the channel state machine and its coordination: the
per-channel `AudioChannel`, the two-channel `ChannelManager` and the playback
engine bindings they drive.
"""

from .channel import AudioChannel
from .engine import MpvEngine, MpvSessionFactory, PlaybackEngine
from .manager import ChannelManager
from .types import ChannelState, EngineEvent, EngineEventType, HistoryEntry, LibraryEntry

__all__ = [
    "AudioChannel",
    "ChannelManager",
    "ChannelState",
    "EngineEvent",
    "EngineEventType",
    "HistoryEntry",
    "LibraryEntry",
    "MpvEngine",
    "MpvSessionFactory",
    "PlaybackEngine",
]
