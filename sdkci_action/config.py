"""
Configuration resolution for the actions.

Each setting is resolved in priority order: command-line option, then
environment variable (plain ``NAME`` or the ``INPUT_NAME`` form set by
GitHub Actions for action inputs), then a default.
"""

import logging
import os

from sdkci_client.client import DEFAULT_BASE_URL
from sdkci_common.errors import ConfigurationError
from sdkci_engine.poller import MAX_POLLING_SECONDS, POLLING_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

LOG_LEVELS = ("off", "error", "warn", "info", "debug")


def get_env(name: str) -> str | None:
    """
    Read a setting from ``NAME`` or ``INPUT_NAME``.

    Empty values are treated as unset.
    """
    upper = name.upper()
    return os.environ.get(upper) or os.environ.get(f"INPUT_{upper}") or None


def input_envvars(name: str) -> list[str]:
    """Environment variables click should consult for an action input."""
    upper = name.upper()
    return [upper, f"INPUT_{upper}"]


def get_api_key(cli_arg: str | None = None) -> str:
    """
    Get the build API key.

    Priority (highest to lowest):
    1. Command line argument (--api-key)
    2. Environment variable (STAINLESS_API_KEY or INPUT_STAINLESS_API_KEY)

    Raises:
        ConfigurationError: If no API key was supplied
    """
    api_key = cli_arg or get_env("stainless_api_key")
    if not api_key:
        raise ConfigurationError("Input required and not supplied: stainless_api_key")
    return api_key


def get_server_url(cli_arg: str | None = None) -> str:
    """
    Get the build API base URL.

    Environment variables:
    - STAINLESS_API_URL: Custom API URL (useful for testing against staging)
    """
    return cli_arg or get_env("stainless_api_url") or DEFAULT_BASE_URL


def _positive_float(name: str, raw: str | float | None, default: float) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid {name}={raw}, using default {default:g}")
        return default
    if value < 0:
        logger.warning(f"Invalid {name}={value:g}, using default {default:g}")
        return default
    return value


def get_polling_interval(cli_arg: float | None = None) -> float:
    """
    Get the delay between build polls in seconds.

    Uses --polling-interval, then POLLING_INTERVAL_SECONDS, then 5 seconds.
    Negative or unparsable values fall back to the default with a warning.
    """
    raw = cli_arg if cli_arg is not None else get_env("polling_interval_seconds")
    return _positive_float("polling_interval_seconds", raw, POLLING_INTERVAL_SECONDS)


def get_max_polling_seconds(cli_arg: float | None = None) -> float:
    """
    Get how long to poll a build before timing out, in seconds.

    Uses --max-polling-seconds, then MAX_POLLING_SECONDS, then 10 minutes.
    Zero is allowed and times out every unfinished language immediately.
    """
    raw = cli_arg if cli_arg is not None else get_env("max_polling_seconds")
    return _positive_float("max_polling_seconds", raw, MAX_POLLING_SECONDS)


def get_log_level(cli_arg: str | None = None) -> int:
    """
    Get the logging level.

    Accepts off, error, warn, info or debug (case-insensitive, "warning" is
    accepted too) from --log-level or LOG_LEVEL. Unknown values log a
    warning and fall back to info.
    """
    raw = cli_arg or get_env("log_level")
    if not raw:
        return logging.INFO

    value = raw.lower()
    if value == "warning":
        value = "warn"
    levels = {
        "off": logging.CRITICAL + 10,
        "error": logging.ERROR,
        "warn": logging.WARNING,
        "info": logging.INFO,
        "debug": logging.DEBUG,
    }
    if value not in levels:
        logger.warning(
            f"Got log level {raw}, expected one of {', '.join(LOG_LEVELS)}"
        )
        return logging.INFO
    return levels[value]


def telemetry_enabled() -> bool:
    """Result reporting is on unless STAINLESS_DISABLE_TELEMETRY is set."""
    return not os.environ.get("STAINLESS_DISABLE_TELEMETRY")
