"""Soft checks on raw configuration that warrant a warning but not a failure."""

import warnings
from typing import Any, Dict, List

from .duration import DurationParseError, parse_duration


def check_for_warnings(config_dict: Dict[str, Any]) -> List[str]:
    """
    Check configuration for potential issues and return warnings.

    Args:
        config_dict: Raw configuration dictionary

    Returns:
        List of warning messages
    """
    warning_messages = []

    sync = config_dict.get("sync", {})
    if isinstance(sync, dict):
        interval = sync.get("auto_sync_interval")
        if isinstance(interval, str):
            try:
                if parse_duration(interval) < 30:
                    warning_messages.append(
                        f"Short auto_sync_interval ({interval}) polls the backend more than twice a minute"
                    )
            except DurationParseError:
                pass  # reported by model validation

        if sync.get("auto_sync_enabled") is False:
            warning_messages.append("auto_sync_enabled is false; runs start only on demand")

        if sync.get("force_refresh") is False:
            warning_messages.append(
                "force_refresh is false; the backend may skip runs inside its own freshness window"
            )

    stream = config_dict.get("stream", {})
    if isinstance(stream, dict):
        attempts = stream.get("max_reconnect_attempts")
        if attempts == 0:
            warning_messages.append(
                "max_reconnect_attempts is 0; a dropped stream will not be reconnected"
            )

    api = config_dict.get("api", {})
    if isinstance(api, dict):
        base_url = api.get("base_url")
        if isinstance(base_url, str) and base_url.strip().startswith("http://") and not any(
            host in base_url for host in ("localhost", "127.0.0.1")
        ):
            warning_messages.append(
                f"api.base_url ({base_url}) uses plain HTTP; bearer tokens will be sent unencrypted"
            )

    return warning_messages


def emit_warnings(warning_messages: List[str]) -> None:
    """Emit each message as a UserWarning."""
    for message in warning_messages:
        warnings.warn(message, UserWarning, stacklevel=2)
