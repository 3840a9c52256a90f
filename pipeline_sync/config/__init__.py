"""Configuration management module for the pipeline sync client."""

from .environment import EnvironmentConfig, load_environment_config
from .exceptions import ConfigurationError
from .loader import load_config, validate_config_file
from .models import (
    ApiConfig,
    AppConfig,
    LogFormat,
    LoggingConfig,
    LogLevel,
    StreamConfig,
    SyncConfig,
)

__all__ = [
    # Main loader functions
    "load_config",
    "validate_config_file",
    "load_environment_config",
    # Configuration models
    "AppConfig",
    "ApiConfig",
    "StreamConfig",
    "SyncConfig",
    "LoggingConfig",
    "EnvironmentConfig",
    # Enums
    "LogLevel",
    "LogFormat",
    # Exceptions
    "ConfigurationError",
]
