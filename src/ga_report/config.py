"""Configuration parsing and validation for the GA region report generator."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional

from .errors import AuthenticationError, ConfigurationError

DEFAULT_MAX_CONCURRENT_REQUESTS = 5
DEFAULT_PROPERTIES_PER_CHUNK = 50
DEFAULT_MAX_PROPERTIES_PER_REQUEST = 50
DEFAULT_BENCHMARK_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 30

# Hard limits imposed by the provider.
MAX_CONCURRENT_REQUESTS_LIMIT = 50
PROVIDER_PROPERTY_CAP = 50


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the report generator."""

    access_token: str
    max_concurrent_requests: int = DEFAULT_MAX_CONCURRENT_REQUESTS
    properties_per_chunk: int = DEFAULT_PROPERTIES_PER_CHUNK
    max_properties_per_request: int = DEFAULT_MAX_PROPERTIES_PER_REQUEST
    benchmark_seconds: float = DEFAULT_BENCHMARK_SECONDS
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS

    def token_provider(self) -> Callable[[], str]:
        """Return a callable handing out the provider credential per outbound call."""
        return lambda: self.access_token


def _read_int(name: str, default: int, minimum: int, maximum: Optional[int] = None) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default

    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer, got '{raw}'.") from exc

    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum is not None else f"at least {minimum}"
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer {bounds}, got {value}.")

    return value


def _read_float(name: str, default: float, minimum: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default

    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid value for '{name}': expected a number, got '{raw}'.") from exc

    if value < minimum:
        raise ConfigurationError(f"Invalid value for '{name}': expected a number >= {minimum}, got {value}.")

    return value


def load_config(timeout_seconds: Optional[int] = None) -> Config:
    """Build and validate application configuration from the environment.

    Args:
        timeout_seconds: Optional per-request timeout overriding ``GA_TIMEOUT_SECONDS``.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If a numeric setting is malformed or out of range.
        AuthenticationError: If ``GA_ACCESS_TOKEN`` is not configured.
    """
    access_token = os.getenv("GA_ACCESS_TOKEN", "").strip()
    if not access_token:
        raise AuthenticationError(
            "Missing required Google Analytics access token. "
            "Set the 'GA_ACCESS_TOKEN' environment variable before generating reports."
        )

    if timeout_seconds is not None and timeout_seconds <= 0:
        raise ConfigurationError("Invalid value for 'timeout_seconds': expected an integer greater than 0.")

    return Config(
        access_token=access_token,
        max_concurrent_requests=_read_int(
            "GA_MAX_CONCURRENT_REQUESTS",
            DEFAULT_MAX_CONCURRENT_REQUESTS,
            minimum=1,
            maximum=MAX_CONCURRENT_REQUESTS_LIMIT,
        ),
        properties_per_chunk=_read_int(
            "GA_PROPERTIES_PER_CHUNK",
            DEFAULT_PROPERTIES_PER_CHUNK,
            minimum=1,
            maximum=PROVIDER_PROPERTY_CAP,
        ),
        max_properties_per_request=_read_int(
            "GA_MAX_PROPERTIES_PER_REQUEST",
            DEFAULT_MAX_PROPERTIES_PER_REQUEST,
            minimum=1,
        ),
        benchmark_seconds=_read_float("GA_TOS_BENCHMARK_SECONDS", DEFAULT_BENCHMARK_SECONDS, minimum=0.0),
        timeout_seconds=(
            timeout_seconds
            if timeout_seconds is not None
            else _read_int("GA_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS, minimum=1)
        ),
    )
