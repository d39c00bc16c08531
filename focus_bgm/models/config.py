"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlayerConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Playback
    default_volume: int = 80
    volume_step: int = 5
    history_limit: int = 10
    loop_indicator_seconds: float = 3.0
    mpv_path: str = "mpv"

    # Downloads
    ytdlp_path: str = "yt-dlp"
    ytdlp_extra_args: list[str] = Field(default_factory=list)
    progress_interval: float = 0.5
    max_title_length: int = 200

    # Metadata
    metadata_timeout: float = 10.0

    # Internal fields not loaded from INI file
    config_path: str = Field("", repr=False)

    @field_validator("default_volume")
    @classmethod
    def validate_volume(cls, v: int) -> int:
        if v < 0 or v > 100:
            raise ValueError("Default volume must be between 0 and 100.")
        return v

    @field_validator("volume_step")
    @classmethod
    def validate_volume_step(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("Volume step must be between 1 and 50.")
        return v

    @field_validator("history_limit")
    @classmethod
    def validate_history_limit(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("History limit must be between 1 and 50.")
        return v

    @field_validator("max_title_length")
    @classmethod
    def validate_title_length(cls, v: int) -> int:
        if v < 16 or v > 255:
            raise ValueError("Max title length must be between 16 and 255.")
        return v

    @field_validator("loop_indicator_seconds", "progress_interval", "metadata_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Durations must be greater than zero.")
        return v

    @field_validator("mpv_path", "ytdlp_path")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        if not v:
            raise ValueError("Executable paths cannot be empty.")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
