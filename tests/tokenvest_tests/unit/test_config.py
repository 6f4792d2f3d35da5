"""
Tests for environment and YAML driven settings.
"""

import logging

import pytest

from tokenvest.core.config import (
    DEFAULT_MAX_NAME_BYTES,
    NetworkType,
    Settings,
    get_settings,
    load_settings,
    program_id_from_seed,
    reset_settings,
)
from tokenvest.core.vesting_exceptions import ConfigurationError


def test_defaults():
    settings = load_settings(env={})
    assert settings.network is NetworkType.TESTNET
    assert settings.max_name_bytes == DEFAULT_MAX_NAME_BYTES
    assert settings.address_prefix == "TVST"
    assert settings.log_level == "INFO"
    assert len(settings.program_id) == 32


def test_environment_overrides():
    settings = load_settings(
        env={
            "TOKENVEST_NETWORK": "MAINNET",
            "TOKENVEST_PROGRAM_ID": "custom",
            "TOKENVEST_MAX_NAME_BYTES": "16",
            "TOKENVEST_DATA_DIR": "/tmp/vest",
            "TOKENVEST_LOG_LEVEL": "debug",
        }
    )
    assert settings == Settings(
        network=NetworkType.MAINNET,
        program_seed="custom",
        max_name_bytes=16,
        data_dir="/tmp/vest",
        log_level="DEBUG",
    )
    assert settings.address_prefix == "VST"
    assert settings.program_id == program_id_from_seed("custom")


def test_blank_environment_values_ignored():
    assert load_settings(env={"TOKENVEST_NETWORK": "  "}).network is NetworkType.TESTNET


def test_yaml_overlay_wins_over_environment(tmp_path):
    config = tmp_path / "tokenvest.yaml"
    config.write_text("network: mainnet\nmax_name_bytes: 64\n", encoding="utf-8")
    settings = load_settings(env={"TOKENVEST_NETWORK": "testnet"}, config_file=str(config))
    assert settings.network is NetworkType.MAINNET
    assert settings.max_name_bytes == 64


def test_yaml_path_from_environment(tmp_path):
    config = tmp_path / "tokenvest.yaml"
    config.write_text("program_seed: from-yaml\n", encoding="utf-8")
    settings = load_settings(env={"TOKENVEST_CONFIG": str(config)})
    assert settings.program_seed == "from-yaml"


def test_unknown_yaml_keys_warn(tmp_path, caplog):
    config = tmp_path / "tokenvest.yaml"
    config.write_text("network: testnet\ncolour: blue\n", encoding="utf-8")
    with caplog.at_level(logging.WARNING, logger="tokenvest.core.config"):
        load_settings(env={}, config_file=str(config))
    assert "colour" in caplog.text


@pytest.mark.parametrize(
    "content",
    ["network: [unterminated", "- just\n- a list\n"],
)
def test_bad_yaml_rejected(tmp_path, content):
    config = tmp_path / "tokenvest.yaml"
    config.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_settings(env={}, config_file=str(config))


def test_missing_config_file(tmp_path):
    with pytest.raises(ConfigurationError):
        load_settings(env={}, config_file=str(tmp_path / "missing.yaml"))


@pytest.mark.parametrize(
    "env",
    [
        {"TOKENVEST_NETWORK": "devnet"},
        {"TOKENVEST_MAX_NAME_BYTES": "zero"},
        {"TOKENVEST_MAX_NAME_BYTES": "0"},
        {"TOKENVEST_LOG_LEVEL": "LOUD"},
    ],
)
def test_invalid_values_rejected(env):
    with pytest.raises(ConfigurationError):
        load_settings(env=env)


def test_get_settings_is_cached_until_reset(monkeypatch):
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("TOKENVEST_NETWORK", "mainnet")
    assert get_settings().network is NetworkType.TESTNET

    reset_settings()
    assert get_settings().network is NetworkType.MAINNET
