# config.py
import logging
import os
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger("smallchain.config")

BASE_DIR = os.path.expanduser("~/.smallchain")

DEFAULTS = {
    "chain_file": os.path.join(BASE_DIR, "data", "chain.json"),
    "key_file": os.path.join(BASE_DIR, "keys", "validator.priv"),
    "consensus_algorithm": "dbft",
    "block_list_count": 100,
    "num_validators": 4,
    "num_rounds": 100,
    "block_size": 5,
    "batch_size": 1,
}

POSITIVE_KEYS = ("block_list_count", "num_validators", "num_rounds", "block_size", "batch_size")


class ConfigError(Exception):
    """Raised when a configuration file cannot be used."""


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration, overlaying a YAML file on the defaults.

    Args:
        config_path: Path to YAML configuration file (optional)

    Returns:
        Configuration dictionary
    """
    config = dict(DEFAULTS)
    if not config_path:
        return config
    if not os.path.exists(config_path):
        logger.warning(f"Configuration file {config_path} not found - using defaults")
        return config
    try:
        with open(config_path, "r") as f:
            loaded = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load configuration from {config_path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    unknown = set(loaded) - set(DEFAULTS)
    for key in sorted(unknown):
        logger.warning(f"Ignoring unknown configuration key: {key}")
    for key in sorted(set(loaded) & set(DEFAULTS)):
        config[key] = validate_value(key, loaded[key])
    logger.info(f"Configuration loaded from {config_path}")
    return config


def validate_value(key: str, value: Any) -> Any:
    """Checks a configured value against the type of its default."""
    expected = type(DEFAULTS[key])
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, expected):
        raise ConfigError(
            f"Configuration key {key} must be of type {expected.__name__}, got {value!r}"
        )
    if key in POSITIVE_KEYS and value < 1:
        raise ConfigError(f"Configuration key {key} must be a positive integer, got {value}")
    return value
