"""
Configuration loading for Checkup.

Settings come from three layers, later layers winning:

1. Built-in defaults (cache under ``platformdirs.user_cache_dir("checkup")``)
2. An optional YAML file with upper-case keys, by default
   ``platformdirs.user_config_dir("checkup")/checkup.yaml``
3. Overrides passed by the caller (the CLI flags)

``GITHUB_TOKEN`` and ``GITLAB_TOKEN`` from the environment supply tokens for
github.com and gitlab.com unless the file already names one for that host.
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional, Tuple

import platformdirs
import yaml

from checkup.constants import (
    APP_NAME,
    CONFIG_FILE_NAME,
    DEFAULT_BIND_HOST,
    DEFAULT_BIND_PORT,
    DEFAULT_CACHE_HOURS,
    DEFAULT_GITHUB_HOST,
    DEFAULT_GITLAB_HOST,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_WARM_CONCURRENCY,
)
from checkup.exceptions import ConfigurationError
from checkup.log_utils import logger

TOKEN_ENV_VARS = {
    DEFAULT_GITHUB_HOST: "GITHUB_TOKEN",
    DEFAULT_GITLAB_HOST: "GITLAB_TOKEN",
}

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def default_config_path() -> str:
    return os.path.join(platformdirs.user_config_dir(APP_NAME), CONFIG_FILE_NAME)


def default_cache_dir() -> str:
    return platformdirs.user_cache_dir(APP_NAME)


@dataclass(frozen=True)
class Settings:
    """Immutable process-wide settings."""

    cache_dir: str = field(default_factory=default_cache_dir)
    cache_hours: float = DEFAULT_CACHE_HOURS
    host: str = DEFAULT_BIND_HOST
    port: int = DEFAULT_BIND_PORT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    tokens: Mapping[str, str] = field(default_factory=dict)
    warm: Tuple[str, ...] = ()
    warm_concurrency: int = DEFAULT_WARM_CONCURRENCY
    log_level: Optional[str] = None
    log_dir: Optional[str] = None

    @property
    def ttl(self) -> timedelta:
        return timedelta(hours=self.cache_hours)


def _read_config_file(config_path: str) -> Dict[str, Any]:
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(
            f"Could not read configuration file {config_path}", details=str(e)
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Invalid YAML in configuration file {config_path}", details=str(e)
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {config_path} must contain a mapping",
            details=f"got {type(data).__name__}",
        )
    return data


def _positive_number(name: str, value: Any, integer: bool = False) -> Any:
    if isinstance(value, bool):
        raise ConfigurationError(f"{name} must be a number", details=repr(value))
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a number", details=repr(value)) from e
    if integer and isinstance(value, float) and not value.is_integer():
        raise ConfigurationError(f"{name} must be a whole number", details=repr(value))
    if number <= 0:
        raise ConfigurationError(f"{name} must be positive", details=repr(value))
    return number


def _string_list(name: str, value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(
        isinstance(item, str) and item.strip() for item in value
    ):
        raise ConfigurationError(f"{name} must be a list of strings", details=repr(value))
    return tuple(item.strip() for item in value)


def _token_map(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(
        isinstance(host, str) and isinstance(token, str) for host, token in value.items()
    ):
        raise ConfigurationError(
            "TOKENS must map host names to token strings", details=repr(value)
        )
    return {host.strip().lower(): token for host, token in value.items() if token}


def _build_settings(values: Dict[str, Any]) -> Settings:
    log_level = values.get("LOG_LEVEL")
    if log_level is not None:
        log_level = str(log_level).upper()
        if log_level not in _VALID_LOG_LEVELS:
            raise ConfigurationError(
                "LOG_LEVEL must be one of " + ", ".join(sorted(_VALID_LOG_LEVELS)),
                details=repr(values.get("LOG_LEVEL")),
            )

    port = _positive_number("PORT", values.get("PORT", DEFAULT_BIND_PORT), integer=True)
    if port > 65535:
        raise ConfigurationError("PORT must be at most 65535", details=repr(port))

    cache_dir = values.get("CACHE_DIR") or default_cache_dir()
    log_dir = values.get("LOG_DIR") or None

    return Settings(
        cache_dir=os.path.expanduser(str(cache_dir)),
        cache_hours=_positive_number(
            "CACHE_HOURS", values.get("CACHE_HOURS", DEFAULT_CACHE_HOURS)
        ),
        host=str(values.get("HOST") or DEFAULT_BIND_HOST),
        port=port,
        request_timeout=_positive_number(
            "REQUEST_TIMEOUT", values.get("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
        ),
        tokens=values.get("TOKENS") or {},
        warm=_string_list("WARM", values.get("WARM")),
        warm_concurrency=_positive_number(
            "WARM_CONCURRENCY",
            values.get("WARM_CONCURRENCY", DEFAULT_WARM_CONCURRENCY),
            integer=True,
        ),
        log_level=log_level,
        log_dir=os.path.expanduser(str(log_dir)) if log_dir else None,
    )


def load_settings(
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """
    Load settings from defaults, the YAML configuration file, the environment and overrides.

    Parameters:
        config_path (str | None): Explicit configuration file. It must exist when given;
            the default location is only read if present.
        overrides (Mapping | None): Upper-case keys that take precedence over the file.
            `None` values are ignored so unset CLI flags do not mask file values.

    Returns:
        Settings: The validated settings.

    Raises:
        ConfigurationError: If the file cannot be read or parsed, or a value is invalid.
    """
    values: Dict[str, Any] = {}

    if config_path is not None:
        if not os.path.exists(config_path):
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        values.update(_read_config_file(config_path))
        logger.debug(f"Loaded configuration from {config_path}")
    else:
        default_path = default_config_path()
        if os.path.exists(default_path):
            values.update(_read_config_file(default_path))
            logger.debug(f"Loaded configuration from {default_path}")

    tokens = _token_map(values.get("TOKENS"))
    for host, env_var in TOKEN_ENV_VARS.items():
        env_token = os.environ.get(env_var)
        if env_token and host not in tokens:
            tokens[host] = env_token
    values["TOKENS"] = tokens

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    return _build_settings(values)
