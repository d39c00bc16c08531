from __future__ import annotations

import configparser

import pytest

from focus_bgm.exceptions import ConfigurationError
from focus_bgm.models.config import PlayerConfig
from focus_bgm.storage.config_manager import ConfigManager


def test_missing_file_uses_defaults(tmp_path) -> None:
    config = ConfigManager(tmp_path / "config.ini").load_config()
    assert config.default_volume == 80
    assert config.history_limit == 10
    assert config.config_path == str(tmp_path)


def test_save_and_load_round_trip_with_overrides(tmp_path) -> None:
    path = tmp_path / "config.ini"
    manager = ConfigManager(path)
    manager.save_new_config(
        {"default_volume": 50, "ytdlp_extra_args": ["--cookies", "c.txt"]}
    )

    config = ConfigManager(path).load_config({"volume_step": 10})
    assert config.default_volume == 50
    assert config.volume_step == 10
    assert config.ytdlp_extra_args == ["--cookies", "c.txt"]


def test_missing_keys_are_migrated(tmp_path) -> None:
    path = tmp_path / "config.ini"
    path.write_text("[DEFAULT]\ndefault_volume = 30\n", encoding="utf-8")

    config = ConfigManager(path).load_config()
    assert config.default_volume == 30

    parser = configparser.ConfigParser()
    parser.read(path, encoding="utf-8")
    assert set(parser["DEFAULT"]) == PlayerConfig.get_ini_keys()


@pytest.mark.parametrize(
    "line",
    ["default_volume = 150", "default_volume = loud", "mpv_path = ", "history_limit = 0"],
)
def test_invalid_values_raise_configuration_error(tmp_path, line) -> None:
    path = tmp_path / "config.ini"
    path.write_text(f"[DEFAULT]\n{line}\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ConfigManager(path).load_config()


def test_unparseable_file(tmp_path) -> None:
    path = tmp_path / "config.ini"
    path.write_text("default_volume = 30\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="parsing"):
        ConfigManager(path).load_config()
