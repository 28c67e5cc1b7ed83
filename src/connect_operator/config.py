"""Configuration management with validation.

All settings come from environment variables and are validated at
construction time so a misconfigured operator fails at startup rather
than in the middle of a reconcile loop.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_RESYNC_INTERVAL_SECONDS = 60
MIN_RESYNC_INTERVAL_SECONDS = 5
MAX_RESYNC_INTERVAL_SECONDS = 3600

DEFAULT_BACKOFF_MIN_SECONDS = 1.0
DEFAULT_BACKOFF_MAX_SECONDS = 300.0

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
MIN_REQUEST_TIMEOUT_SECONDS = 1.0
MAX_REQUEST_TIMEOUT_SECONDS = 300.0

DEFAULT_MAX_CONCURRENT_RECONCILES = 4
MAX_CONCURRENT_RECONCILES_LIMIT = 64

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max resource document
MAX_CONNECTOR_NAME_LENGTH = 249

# Kafka Connect rejects names containing control characters; slashes break the path
VALID_CONNECTOR_NAME_PATTERN = r"^[^/\x00-\x1f]+$"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Paths
    specs_dir: Path = field(default_factory=lambda: Path("/specs"))
    status_dir: Path = field(default_factory=lambda: Path("/status"))

    # Timing
    resync_interval_seconds: int = DEFAULT_RESYNC_INTERVAL_SECONDS
    backoff_min_seconds: float = DEFAULT_BACKOFF_MIN_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Concurrency
    max_concurrent_reconciles: int = DEFAULT_MAX_CONCURRENT_RECONCILES

    # Drift detection
    ignore_config_keys: frozenset[str] = frozenset()

    # Behavior
    dry_run: bool = False
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.specs_dir.exists():
            errors.append(f"Specs directory does not exist: {self.specs_dir}")

        if not (
            MIN_RESYNC_INTERVAL_SECONDS
            <= self.resync_interval_seconds
            <= MAX_RESYNC_INTERVAL_SECONDS
        ):
            errors.append(
                f"RESYNC_INTERVAL must be between {MIN_RESYNC_INTERVAL_SECONDS} "
                f"and {MAX_RESYNC_INTERVAL_SECONDS} seconds"
            )

        if self.backoff_min_seconds <= 0:
            errors.append("BACKOFF_MIN must be greater than zero")
        elif self.backoff_max_seconds < self.backoff_min_seconds:
            errors.append("BACKOFF_MAX must be greater than or equal to BACKOFF_MIN")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS:g} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS:g} seconds"
            )

        if not (1 <= self.max_concurrent_reconciles <= MAX_CONCURRENT_RECONCILES_LIMIT):
            errors.append(
                "MAX_CONCURRENT_RECONCILES must be between 1 "
                f"and {MAX_CONCURRENT_RECONCILES_LIMIT}"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def log_level_value(self) -> int:
        """Numeric logging level for the configured LOG_LEVEL."""
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            SPECS_DIR: Directory of Connector/ProviderConfig YAML documents (default: /specs)
            STATUS_DIR: Directory where connector status is written (default: /status)
            RESYNC_INTERVAL: Seconds between full resyncs of every resource (default: 60)
            BACKOFF_MIN: Initial retry delay in seconds after a failed cycle (default: 1)
            BACKOFF_MAX: Upper bound for the retry delay in seconds (default: 300)
            REQUEST_TIMEOUT: Deadline for each Kafka Connect REST call (default: 30)
            MAX_CONCURRENT_RECONCILES: Number of reconcile workers (default: 4)
            IGNORE_CONFIG_KEYS: Comma separated config keys excluded from drift
                detection, in addition to the built-in ignore set
            DRY_RUN: If "true", only detect drift without applying (default: false)
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

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_keys(key: str) -> frozenset[str]:
            value = os.environ.get(key, "")
            return frozenset(k.strip() for k in value.split(",") if k.strip())

        return cls(
            specs_dir=Path(os.environ.get("SPECS_DIR", "/specs")),
            status_dir=Path(os.environ.get("STATUS_DIR", "/status")),
            resync_interval_seconds=get_int("RESYNC_INTERVAL", DEFAULT_RESYNC_INTERVAL_SECONDS),
            backoff_min_seconds=get_float("BACKOFF_MIN", DEFAULT_BACKOFF_MIN_SECONDS),
            backoff_max_seconds=get_float("BACKOFF_MAX", DEFAULT_BACKOFF_MAX_SECONDS),
            request_timeout_seconds=get_float("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            max_concurrent_reconciles=get_int(
                "MAX_CONCURRENT_RECONCILES", DEFAULT_MAX_CONCURRENT_RECONCILES
            ),
            ignore_config_keys=get_keys("IGNORE_CONFIG_KEYS"),
            dry_run=get_bool("DRY_RUN", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
