"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class FocusBgmError(Exception):
    """Base exception for all application-specific errors."""


class EngineError(FocusBgmError):
    """Raised when the playback engine rejects or fails a transport command."""


class PlaybackError(FocusBgmError):
    """Raised when a play request cannot proceed (e.g. title resolution failed)."""


class PolicyError(FocusBgmError):
    """
    Raised synchronously when a request is refused before any state is touched.
    """


class AlreadyDownloadingError(PolicyError):
    """Raised when a channel already has a download in flight."""


class AlreadyInLibraryError(PolicyError):
    """Raised when the requested URL is already in the channel's library."""


class InvalidIndexError(PolicyError):
    """Raised for an out-of-range channel, library or history index."""


class LibraryFileNotFoundError(PolicyError):
    """Raised when a library entry's backing file no longer exists on disk."""


class InvalidSourceError(PolicyError):
    """Raised when a URL is not a supported media source."""


class NothingLoadedError(PolicyError):
    """Raised when an operation needs a loaded source and the channel is empty."""


class DownloadError(FocusBgmError):
    """Base class for failures of the download pipeline."""

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.exit_code = exit_code


class DownloadFailedError(DownloadError):
    """Raised when the downloader exits with a generic failure."""


class SourceBlockedError(DownloadError):
    """Raised when the media source refused the download (HTTP 403)."""


class DownloadFilesystemError(DownloadError):
    """Raised when the downloader could not write its output."""


class DownloadCancelledError(DownloadError):
    """Raised to the waiting caller when its download was cancelled."""


class ConfigurationError(FocusBgmError):
    """Raised for issues related to configuration loading or validation."""
