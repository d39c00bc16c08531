"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from focus_bgm.exceptions import ConfigurationError
from focus_bgm.models.config import PlayerConfig

log = logging.getLogger(__name__)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> PlayerConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error: defaults are used.

        Raises:
            ConfigurationError: If the config file is unreadable or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e

            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            try:
                config_from_file = self._get_config_as_dict()
            except ValueError as e:
                raise ConfigurationError(f"Invalid value in configuration: {e}") from e
        else:
            log.debug(f"No config file at '{self.config_file_path}', using defaults.")

        if cli_options:
            config_from_file.update(cli_options)

        try:
            config_dir = self.config_file_path.parent
            return PlayerConfig(**config_from_file, config_path=str(config_dir))
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any] | None = None) -> None:
        """Creates and saves a new configuration file from defaults plus `settings`."""
        settings = settings or {}
        config = configparser.ConfigParser()
        config["DEFAULT"] = {}

        defaults = PlayerConfig()
        for key in sorted(PlayerConfig.get_ini_keys()):
            value = settings.get(key, getattr(defaults, key))
            config["DEFAULT"][key] = self._to_ini_value(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                config.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    @staticmethod
    def _to_ini_value(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, list):
            return ",".join(map(str, value))
        # configparser uses % for interpolation, so we must escape it
        return str(value).replace("%", "%%")

    def get_config_as_dict(self) -> dict[str, Any]:
        """Reads the config file (if any) into a plain dictionary."""
        if self.config_file_path.is_file():
            self._parser.read(self.config_file_path, encoding="utf-8")
        return self._get_config_as_dict()

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = PlayerConfig()
        return {
            "default_volume": section.getint("default_volume", defaults.default_volume),
            "volume_step": section.getint("volume_step", defaults.volume_step),
            "history_limit": section.getint("history_limit", defaults.history_limit),
            "loop_indicator_seconds": section.getfloat(
                "loop_indicator_seconds", defaults.loop_indicator_seconds
            ),
            "mpv_path": section.get("mpv_path", defaults.mpv_path),
            "ytdlp_path": section.get("ytdlp_path", defaults.ytdlp_path),
            "ytdlp_extra_args": [
                a.strip()
                for a in section.get("ytdlp_extra_args", "").split(",")
                if a.strip()
            ],
            "progress_interval": section.getfloat(
                "progress_interval", defaults.progress_interval
            ),
            "max_title_length": section.getint(
                "max_title_length", defaults.max_title_length
            ),
            "metadata_timeout": section.getfloat(
                "metadata_timeout", defaults.metadata_timeout
            ),
        }

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = PlayerConfig()
        needs_saving = False
        config_section = self._parser["DEFAULT"]

        for key in sorted(PlayerConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = self._to_ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
