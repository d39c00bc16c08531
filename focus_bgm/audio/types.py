"""
Plain data types shared by the channel layer and its collaborators.
"""

from dataclasses import dataclass, field, replace
from enum import Enum

DEFAULT_VOLUME = 80
MIN_VOLUME = 0
MAX_VOLUME = 100
HISTORY_LIMIT = 10
CHANNEL_COUNT = 2


def clamp_volume(level: float) -> int:
    """Clamps a volume level into [MIN_VOLUME, MAX_VOLUME]."""
    return int(max(MIN_VOLUME, min(MAX_VOLUME, round(level))))


@dataclass(frozen=True)
class HistoryEntry:
    url: str
    title: str


@dataclass(frozen=True)
class LibraryEntry:
    """A downloaded item. `downloaded_at` is epoch milliseconds."""

    url: str
    title: str
    file_path: str
    file_size: int
    downloaded_at: int


class SourceKind(Enum):
    REMOTE = "remote"
    LOCAL = "local"


@dataclass(frozen=True)
class PlaybackSource:
    """Where the engine should actually load a logical source from."""

    kind: SourceKind
    location: str

    @property
    def is_local(self) -> bool:
        return self.kind is SourceKind.LOCAL


class EngineEventType(Enum):
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    VOLUME_CHANGED = "volume_changed"
    ERROR = "error"


@dataclass(frozen=True)
class EngineEvent:
    kind: EngineEventType
    message: str | None = None
    volume: int | None = None


@dataclass
class ChannelState:
    """Observable state of one playback channel."""

    id: int
    url: str | None = None
    title: str | None = None
    playing: bool = False
    loading: bool = False
    volume: int = DEFAULT_VOLUME
    error: str | None = None
    history: list[HistoryEntry] = field(default_factory=list)
    downloading: bool = False
    download_progress: float = 0.0
    loop_enabled: bool = False
    loop_indicator_until: float | None = None
    library: list[LibraryEntry] = field(default_factory=list)

    def snapshot(self) -> "ChannelState":
        """Returns a copy whose lists are independent of this state."""
        return replace(self, history=list(self.history), library=list(self.library))
