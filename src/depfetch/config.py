"""
Configuration loading for depfetch.

Configuration is a flat mapping with upper-case keys. Values come from, in
increasing order of precedence: DEFAULT_CONFIG, the `depfetch.yaml` file and
`DEPFETCH_<KEY>` environment variables.
"""

import os
from typing import Any, Dict, Optional

import platformdirs
import yaml

from depfetch.constants import (
    CACHE_APP_NAME,
    CONFIG_ENV_PREFIX,
    CONFIG_FILE_NAME,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    DEFAULT_REGISTRY_URL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    GITHUB_TOKEN_ENV_VAR,
    VERSION_INFO_CACHE_EXPIRY_HOURS,
)
from depfetch.exceptions import ConfigurationError
from depfetch.log_utils import logger

DEFAULT_CONFIG: Dict[str, Any] = {
    "CACHE_DIR": None,
    "USE_CACHE": True,
    "COMPONENT": True,
    "REGISTRY_URL": DEFAULT_REGISTRY_URL,
    "GITHUB_TOKEN": None,
    "MAX_CONCURRENT_DOWNLOADS": DEFAULT_MAX_CONCURRENT_DOWNLOADS,
    "MAX_DOWNLOAD_RETRIES": DEFAULT_CONNECT_RETRIES,
    "DOWNLOAD_RETRY_DELAY": DEFAULT_RETRY_DELAY,
    "REQUEST_TIMEOUT": DEFAULT_REQUEST_TIMEOUT,
    "VERSION_INFO_CACHE_EXPIRY_HOURS": VERSION_INFO_CACHE_EXPIRY_HOURS,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def get_config_dir() -> str:
    """Return the platform-appropriate user configuration directory."""
    return platformdirs.user_config_dir(CACHE_APP_NAME)


def get_int(config: Dict[str, Any], key: str, minimum: int = 0) -> int:
    """
    Read an integer setting, falling back to the default on invalid values.

    Values below `minimum` are clamped to `minimum` with a warning.
    """
    default = DEFAULT_CONFIG[key]
    raw_value = config.get(key, default)
    try:
        parsed_value = int(raw_value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r; using default %r", key, raw_value, default)
        return default

    if parsed_value < minimum:
        logger.warning(
            "%s must be >= %d; clamping %d to %d",
            key,
            minimum,
            parsed_value,
            minimum,
        )
        return minimum
    return parsed_value


def get_float(config: Dict[str, Any], key: str, minimum: float = 0.0) -> float:
    """Read a float setting, falling back to the default on invalid values."""
    default = DEFAULT_CONFIG[key]
    raw_value = config.get(key, default)
    try:
        parsed_value = float(raw_value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s value %r; using default %r", key, raw_value, default)
        return float(default)

    if parsed_value < minimum:
        logger.warning(
            "%s must be >= %.3f; clamping %.3f to %.3f",
            key,
            minimum,
            parsed_value,
            minimum,
        )
        return minimum
    return parsed_value


def get_bool(config: Dict[str, Any], key: str) -> bool:
    """Read a boolean setting, accepting the usual string spellings."""
    default = DEFAULT_CONFIG[key]
    raw_value = config.get(key, default)
    if isinstance(raw_value, bool):
        return raw_value
    if isinstance(raw_value, str):
        lowered = raw_value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    elif isinstance(raw_value, int):
        return bool(raw_value)
    logger.warning("Invalid %s value %r; using default %r", key, raw_value, default)
    return bool(default)


def _apply_env_overrides(config: Dict[str, Any]) -> None:
    for key in DEFAULT_CONFIG:
        env_value = os.environ.get(f"{CONFIG_ENV_PREFIX}{key}")
        if env_value is not None:
            config[key] = env_value

    if not config.get("GITHUB_TOKEN"):
        token = os.environ.get(GITHUB_TOKEN_ENV_VAR)
        if token:
            config["GITHUB_TOKEN"] = token


def load_config(directory: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the depfetch configuration.

    Reads CONFIG_FILE_NAME from `directory` when given, otherwise from the
    platformdirs configuration directory. A missing file is not an error: the
    defaults (plus environment overrides) are returned.

    Parameters:
        directory (str | None): Optional directory holding the configuration file.

    Returns:
        dict: Merged configuration mapping.

    Raises:
        ConfigurationError: If the file exists but is not valid YAML or is not a mapping.
    """
    config: Dict[str, Any] = dict(DEFAULT_CONFIG)
    config_path = os.path.join(directory or get_config_dir(), CONFIG_FILE_NAME)

    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Could not read configuration file {config_path}", details=str(e)
            ) from e

        if loaded is None:
            loaded = {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Configuration file {config_path} must contain a mapping"
            )
        config.update({str(key).upper(): value for key, value in loaded.items()})
        logger.debug(f"Loaded configuration from {config_path}")

    _apply_env_overrides(config)
    return config
