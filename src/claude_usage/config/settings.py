"""Configuration management for claude-usage.

Provides functions for loading and validating the poller configuration.
Values come from, in increasing precedence: ``DEFAULT_CONFIG``, the JSON
config file, and ``CLAUDE_USAGE_*`` environment variables.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# File paths
CONFIG_FILE = Path.home() / ".claude" / ".usage_poller.json"

DEFAULT_BASE_URL = "https://api.anthropic.com"
DEFAULT_USER_AGENT = "claude-code/2.1.7"
API_BETA_HEADER = "oauth-2025-04-20"

# Default configuration values
DEFAULT_CONFIG = {
    "base_url": DEFAULT_BASE_URL,
    "user_agent": DEFAULT_USER_AGENT,
    "poll_interval_seconds": 30,
    "max_consecutive_failures": 5,
    "request_timeout_seconds": 30,
    "max_attempts": 3,
    "retry_base_delay_seconds": 1.0,
    "credential_cache_ttl_seconds": 60,
    "expiry_buffer_seconds": 300,
    "credentials_path": None,  # None: platform default
    "use_secret_store": True,
    "secret_store_command": None,  # None: platform default
}

# Environment variable -> (config key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Union[int, float, str]]]] = {
    "CLAUDE_USAGE_POLL_INTERVAL": ("poll_interval_seconds", int),
    "CLAUDE_USAGE_TIMEOUT": ("request_timeout_seconds", int),
    "CLAUDE_USAGE_BASE_URL": ("base_url", str),
}

# Config schema for validation
# Format: key -> (expected_types, validator_func or None)
# validator_func takes value and returns (is_valid, error_message)
ValidatorFunc = Callable[[object], Tuple[bool, str]]


def _positive(v) -> Tuple[bool, str]:
    return (True, "") if v > 0 else (False, "must be greater than 0")


def _non_negative(v) -> Tuple[bool, str]:
    return (True, "") if v >= 0 else (False, "must not be negative")


CONFIG_SCHEMA: Dict[str, Tuple[tuple, Optional[ValidatorFunc]]] = {
    "base_url": (
        (str,),
        lambda v: (True, "") if v.startswith(("http://", "https://"))
        else (False, "must be a valid HTTP/HTTPS URL"),
    ),
    "user_agent": ((str,), lambda v: (True, "") if v else (False, "must not be empty")),
    "poll_interval_seconds": (
        (int, float),
        lambda v: (True, "") if 5 <= v <= 3600 else (False, "must be between 5 and 3600"),
    ),
    "max_consecutive_failures": ((int,), _positive),
    "request_timeout_seconds": ((int, float), _positive),
    "max_attempts": (
        (int,),
        lambda v: (True, "") if 1 <= v <= 10 else (False, "must be between 1 and 10"),
    ),
    "retry_base_delay_seconds": ((int, float), _non_negative),
    "credential_cache_ttl_seconds": ((int, float), _non_negative),
    "expiry_buffer_seconds": ((int, float), _non_negative),
    "credentials_path": ((str, type(None)), None),
    "use_secret_store": ((bool,), None),
    "secret_store_command": (
        (list, type(None)),
        lambda v: (True, "") if v and all(isinstance(p, str) for p in v)
        else (False, "must be a non-empty list of strings"),
    ),
}


def validate_config(config: dict) -> List[str]:
    """Validate configuration against schema.

    Args:
        config: Configuration dictionary to validate.

    Returns:
        List of validation error messages. Empty list if valid.
    """
    errors = []

    for key in config:
        if key not in CONFIG_SCHEMA:
            errors.append(f"Unknown config key: '{key}'")

    for key, (expected_types, validator) in CONFIG_SCHEMA.items():
        if key not in config:
            continue

        value = config[key]

        # bool is an int subclass; only accept it where bool is expected
        if isinstance(value, bool) and bool not in expected_types:
            errors.append(f"'{key}' has invalid type: expected number, got bool")
            continue

        if not isinstance(value, expected_types):
            type_names = " or ".join(t.__name__ for t in expected_types)
            errors.append(
                f"'{key}' has invalid type: expected {type_names}, got {type(value).__name__}"
            )
            continue

        if validator and value is not None:
            is_valid, error_msg = validator(value)
            if not is_valid:
                errors.append(f"'{key}' {error_msg}")

    return errors


def apply_env_overrides(config: dict, environ: Optional[Dict[str, str]] = None) -> dict:
    """Return a copy of config with CLAUDE_USAGE_* environment overrides applied.

    Invalid values are ignored with a warning.
    """
    environ = os.environ if environ is None else environ
    result = config.copy()
    for var, (key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if not raw:
            continue
        try:
            result[key] = parse(raw)
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", var, raw)
    return result


def load_config(
    config_file: Optional[Path] = None,
    validate: bool = True,
    environ: Optional[Dict[str, str]] = None,
) -> dict:
    """Load configuration from file.

    Invalid keys are reported as warnings and replaced with their defaults,
    so a broken config file never prevents the poller from starting.

    Args:
        config_file: Optional path to config file. Defaults to CONFIG_FILE.
        validate: Whether to validate the file contents.
        environ: Environment mapping, defaults to os.environ.

    Returns:
        Configuration dictionary merged with defaults.
    """
    if config_file is None:
        config_file = CONFIG_FILE

    config: dict = {}
    if config_file.exists():
        try:
            with open(config_file, encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read config %s: %s", config_file, e)
            loaded = {}

        if not isinstance(loaded, dict):
            logger.warning("Config %s is not a JSON object, using defaults", config_file)
            loaded = {}
        config = loaded

    config = apply_env_overrides({**DEFAULT_CONFIG, **config}, environ)

    if validate:
        errors = validate_config(config)
        for error in errors:
            logger.warning("Config validation error: %s", error)
        if errors:
            # Fall back to defaults for the offending known keys
            bad_keys = {k for k in config if any(f"'{k}'" in e for e in errors)}
            for key in bad_keys:
                if key in DEFAULT_CONFIG:
                    config[key] = DEFAULT_CONFIG[key]
                else:
                    del config[key]

    return config


__all__ = [
    "CONFIG_FILE",
    "DEFAULT_CONFIG",
    "DEFAULT_BASE_URL",
    "DEFAULT_USER_AGENT",
    "API_BETA_HEADER",
    "CONFIG_SCHEMA",
    "ENV_OVERRIDES",
    "validate_config",
    "apply_env_overrides",
    "load_config",
]
