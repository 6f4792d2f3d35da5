"""
tokenvest Configuration

Supports testnet and mainnet address prefixes and an optional YAML overlay.

Every value comes from an environment variable; if TOKENVEST_CONFIG points at
a YAML file, its top-level keys override the environment.
"""

from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml

from tokenvest.core.vesting_exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class NetworkType(Enum):
    TESTNET = "testnet"
    MAINNET = "mainnet"


DEFAULT_PROGRAM_SEED = "tokenvest-vesting-program"
DEFAULT_MAX_NAME_BYTES = 32
DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".tokenvest")
DEFAULT_LOG_LEVEL = "INFO"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Environment variable -> YAML key
_ENV_KEYS = {
    "TOKENVEST_NETWORK": "network",
    "TOKENVEST_PROGRAM_ID": "program_seed",
    "TOKENVEST_MAX_NAME_BYTES": "max_name_bytes",
    "TOKENVEST_DATA_DIR": "data_dir",
    "TOKENVEST_LOG_LEVEL": "log_level",
}


@dataclass(frozen=True)
class Settings:
    network: NetworkType = NetworkType.TESTNET
    program_seed: str = DEFAULT_PROGRAM_SEED
    max_name_bytes: int = DEFAULT_MAX_NAME_BYTES
    data_dir: str = DEFAULT_DATA_DIR
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def program_id(self) -> bytes:
        """32-byte identity of the vesting program, used as the derivation domain."""
        return program_id_from_seed(self.program_seed)

    @property
    def address_prefix(self) -> str:
        return "VST" if self.network is NetworkType.MAINNET else "TVST"


def program_id_from_seed(seed: str) -> bytes:
    return hashlib.sha256(seed.encode("utf-8")).digest()


def _read_yaml_config(path: Path) -> dict[str, Any]:
    """Load YAML config into dict."""
    if not path.exists():
        raise ConfigurationError(f"Config file {path} does not exist.")
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping.")
    return data


def _parse_network(raw: Any) -> NetworkType:
    try:
        return NetworkType(str(raw).strip().lower())
    except ValueError as exc:
        raise ConfigurationError(
            f"Unknown network {raw!r}; expected 'testnet' or 'mainnet'."
        ) from exc


def _parse_positive_int(name: str, raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def load_settings(
    env: Mapping[str, str] | None = None,
    config_file: str | os.PathLike[str] | None = None,
) -> Settings:
    """
    Build Settings from environment variables and an optional YAML file.

    Args:
        env: Environment mapping (defaults to os.environ)
        config_file: YAML file path; falls back to TOKENVEST_CONFIG

    Returns:
        Validated, immutable Settings

    Raises:
        ConfigurationError: If any value is missing its expected shape
    """
    env = os.environ if env is None else env
    raw: dict[str, Any] = {}
    for env_var, key in _ENV_KEYS.items():
        value = env.get(env_var, "").strip()
        if value:
            raw[key] = value

    config_path = config_file or env.get("TOKENVEST_CONFIG", "").strip()
    if config_path:
        overlay = _read_yaml_config(Path(config_path).expanduser())
        unknown = set(overlay) - set(_ENV_KEYS.values())
        if unknown:
            logger.warning(
                "Ignoring unknown config keys: %s",
                ", ".join(sorted(unknown)),
                extra={"event": "config.unknown_keys", "config_file": str(config_path)},
            )
        raw.update({key: value for key, value in overlay.items() if key not in unknown})

    log_level = str(raw.get("log_level", DEFAULT_LOG_LEVEL)).upper()
    if log_level not in _VALID_LOG_LEVELS:
        raise ConfigurationError(f"Invalid log level {log_level!r}")

    program_seed = str(raw.get("program_seed", DEFAULT_PROGRAM_SEED))
    if not program_seed:
        raise ConfigurationError("program_seed cannot be empty")

    return Settings(
        network=_parse_network(raw.get("network", NetworkType.TESTNET.value)),
        program_seed=program_seed,
        max_name_bytes=_parse_positive_int("max_name_bytes", raw.get("max_name_bytes", DEFAULT_MAX_NAME_BYTES)),
        data_dir=os.path.expanduser(str(raw.get("data_dir", DEFAULT_DATA_DIR))),
        log_level=log_level,
    )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, loaded once from the environment."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
