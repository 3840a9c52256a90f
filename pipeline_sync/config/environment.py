"""Environment variable loading and validation."""

import os
from typing import Optional
from urllib.parse import urlparse

from .exceptions import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./data/pipeline_state.db"

_VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class EnvironmentConfig:
    """Environment variable configuration holder."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        database_url: Optional[str] = None,
        log_level: Optional[str] = None,
        environment: Optional[str] = None,
    ):
        self.api_url = api_url
        self.api_token = api_token
        self.database_url = database_url or DEFAULT_DATABASE_URL
        self.log_level = log_level
        self.environment = environment or "local"


def load_environment_config() -> EnvironmentConfig:
    """
    Load and validate environment variables.

    All variables are optional:
    - PIPELINE_API_URL: Overrides api.base_url from the config file
    - PIPELINE_API_TOKEN: Bearer token sent with every request
    - STATE_DATABASE_URL: SQLAlchemy URL of the local state store
      (default: sqlite:///./data/pipeline_state.db)
    - LOG_LEVEL: Override log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - ENVIRONMENT: Label added to every log record (default: local)

    Returns:
        EnvironmentConfig object with validated values

    Raises:
        ConfigurationError: If a variable is set to an invalid value
    """
    errors = []

    api_url = _get("PIPELINE_API_URL")
    api_token = _get("PIPELINE_API_TOKEN")
    database_url = _get("STATE_DATABASE_URL")
    log_level = _get("LOG_LEVEL")
    environment = _get("ENVIRONMENT")

    if api_url:
        parsed = urlparse(api_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(
                f"Invalid PIPELINE_API_URL: '{api_url}'. Must be an absolute http(s) URL."
            )
        api_url = api_url.rstrip("/")

    if database_url and "://" not in database_url:
        errors.append(
            f"Invalid STATE_DATABASE_URL: '{database_url}'. Expected a URL like sqlite:///./data/state.db"
        )

    if log_level:
        if log_level.upper() not in _VALID_LOG_LEVELS:
            errors.append(
                f"Invalid LOG_LEVEL: '{log_level}'. Must be one of: {', '.join(_VALID_LOG_LEVELS)}"
            )
        log_level = log_level.upper()

    if errors:
        raise ConfigurationError(
            "Environment variable validation failed",
            errors=errors,
            suggestions=[
                "Copy .env.example to .env and adjust the values",
                "Unset variables you do not need; all of them are optional",
            ],
        )

    return EnvironmentConfig(
        api_url=api_url,
        api_token=api_token,
        database_url=database_url,
        log_level=log_level,
        environment=environment,
    )


def _get(name: str) -> Optional[str]:
    """Read an environment variable, treating blank values as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()
