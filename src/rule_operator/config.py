"""Configuration management with validation.

Invalid settings are rejected at load time so a misconfigured operator fails
before it issues a single remote call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Batch retry ceilings and the propagation delay form the compatibility
# surface with the orchestrator and are not configurable.
MAX_RETRIES_ON_PUT_TARGETS = 5
MAX_RETRIES_ON_REMOVE_TARGETS = 5
PROPAGATION_DELAY_SECONDS = 30

# Configuration constants with documented bounds
DEFAULT_STABILIZATION_INTERVAL_SECONDS = 5
MIN_STABILIZATION_INTERVAL_SECONDS = 1
MAX_STABILIZATION_INTERVAL_SECONDS = 300

DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_READ_TIMEOUT_SECONDS = 30

DEFAULT_SDK_MAX_ATTEMPTS = 3
MAX_SDK_MAX_ATTEMPTS = 10

# Input limits
MAX_SPEC_FILE_SIZE_BYTES = 256 * 1024  # desired model or progress state document
MAX_RULE_NAME_LENGTH = 64
MAX_TARGET_ID_LENGTH = 64
MAX_TARGETS_PER_RULE = 5  # service quota for targets attached to one rule

# Input validation patterns
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    region: str

    # Remote endpoint override (local emulators, VPC endpoints)
    endpoint_url: str | None = None

    # Timing
    stabilization_interval_seconds: int = DEFAULT_STABILIZATION_INTERVAL_SECONDS
    connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    read_timeout_seconds: int = DEFAULT_READ_TIMEOUT_SECONDS

    # Transport-level retries performed by the SDK for throttling and
    # connection errors. Partial batch failures are retried by the engine.
    sdk_max_attempts: int = DEFAULT_SDK_MAX_ATTEMPTS

    # Logging
    enable_json_logging: bool = True
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        import re

        errors: list[str] = []

        if not self.region:
            errors.append("AWS_REGION is required")
        elif not re.match(VALID_REGION_PATTERN, self.region):
            errors.append(f"AWS_REGION must be a valid region name: {self.region}")

        if self.endpoint_url is not None and not self.endpoint_url.startswith(
            ("http://", "https://")
        ):
            errors.append(f"EVENTS_ENDPOINT_URL must be an http(s) URL: {self.endpoint_url}")

        if not (
            MIN_STABILIZATION_INTERVAL_SECONDS
            <= self.stabilization_interval_seconds
            <= MAX_STABILIZATION_INTERVAL_SECONDS
        ):
            errors.append(
                f"STABILIZATION_INTERVAL must be between {MIN_STABILIZATION_INTERVAL_SECONDS} "
                f"and {MAX_STABILIZATION_INTERVAL_SECONDS} seconds"
            )

        if self.connect_timeout_seconds < 1:
            errors.append("CONNECT_TIMEOUT must be at least 1 second")
        if self.read_timeout_seconds < 1:
            errors.append("READ_TIMEOUT must be at least 1 second")

        if not (1 <= self.sdk_max_attempts <= MAX_SDK_MAX_ATTEMPTS):
            errors.append(f"SDK_MAX_ATTEMPTS must be between 1 and {MAX_SDK_MAX_ATTEMPTS}")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AWS_REGION: Region of the rules API (falls back to AWS_DEFAULT_REGION)
            EVENTS_ENDPOINT_URL: Optional endpoint override
            STABILIZATION_INTERVAL: Seconds before re-checking an unstable
                mutation (default: 5)
            CONNECT_TIMEOUT: Connect timeout for API calls in seconds (default: 10)
            READ_TIMEOUT: Read timeout for API calls in seconds (default: 30)
            SDK_MAX_ATTEMPTS: Transport retry attempts per call (default: 3)
            ENABLE_JSON_LOGGING: Emit JSON log lines on stdout (default: true)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION", "")

        return cls(
            region=region,
            endpoint_url=os.environ.get("EVENTS_ENDPOINT_URL") or None,
            stabilization_interval_seconds=get_int(
                "STABILIZATION_INTERVAL", DEFAULT_STABILIZATION_INTERVAL_SECONDS
            ),
            connect_timeout_seconds=get_int("CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT_SECONDS),
            read_timeout_seconds=get_int("READ_TIMEOUT", DEFAULT_READ_TIMEOUT_SECONDS),
            sdk_max_attempts=get_int("SDK_MAX_ATTEMPTS", DEFAULT_SDK_MAX_ATTEMPTS),
            enable_json_logging=get_bool("ENABLE_JSON_LOGGING", True),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
