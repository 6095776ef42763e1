"""Client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from .errors import ConfigurationError


class OverflowPolicy(str, Enum):
    """What to do when an event arrives at a full queue."""
    DROP_NEWEST = "drop_newest"
    DROP_OLDEST = "drop_oldest"


def _env_str(name: str, default: str | None = None) -> str | None:
    return os.environ.get(name, default)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {raw!r}")


@dataclass(frozen=True)
class TrackrConfig:
    """
    Configuration for the token-trackr client.

    Can be set via:
    - Constructor arguments
    - Environment variables (TOKEN_TRACKR_*)
    - Config file (YAML or dict)

    Validated on construction; an invalid config raises ConfigurationError
    before any client state exists.
    """
    # Collector URL
    backend_url: str = field(
        default_factory=lambda: _env_str("TOKEN_TRACKR_URL", "http://localhost:8000")
    )

    # Sent as X-API-Key when set
    api_key: str | None = field(
        default_factory=lambda: _env_str("TOKEN_TRACKR_API_KEY")
    )

    tenant_id: str = field(
        default_factory=lambda: _env_str("TOKEN_TRACKR_TENANT_ID", "default")
    )

    # Batching
    batch_size: int = field(
        default_factory=lambda: _env_int("TOKEN_TRACKR_BATCH_SIZE", 10)
    )
    flush_interval: float = field(
        default_factory=lambda: _env_float("TOKEN_TRACKR_FLUSH_INTERVAL", 5.0)
    )

    # Queue
    max_queue_size: int = field(
        default_factory=lambda: _env_int("TOKEN_TRACKR_MAX_QUEUE_SIZE", 1000)
    )
    overflow_policy: OverflowPolicy = field(
        default_factory=lambda: _env_str("TOKEN_TRACKR_OVERFLOW_POLICY", OverflowPolicy.DROP_NEWEST.value)
    )

    # Delivery
    retry_attempts: int = field(
        default_factory=lambda: _env_int("TOKEN_TRACKR_RETRY_ATTEMPTS", 3)
    )
    timeout_ms: int = field(
        default_factory=lambda: _env_int("TOKEN_TRACKR_TIMEOUT", 30000)
    )
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0
    ingest_path: str = "/api/v1/usage/batch"
    max_concurrent_sends: int = 2

    # False = record() blocks until the batch is delivered
    async_mode: bool = field(
        default_factory=lambda: _env_bool("TOKEN_TRACKR_ASYNC_MODE", True)
    )

    # Probe cloud metadata endpoints in the background on startup
    detect_cloud: bool = field(
        default_factory=lambda: _env_bool("TOKEN_TRACKR_DETECT_CLOUD", True)
    )

    # Register an atexit hook that calls shutdown()
    shutdown_on_exit: bool = True

    def __post_init__(self):
        if not self.backend_url:
            raise ConfigurationError("backend_url is required")
        object.__setattr__(self, "backend_url", self.backend_url.rstrip("/"))

        if not self.tenant_id:
            raise ConfigurationError("tenant_id is required")

        try:
            object.__setattr__(self, "overflow_policy", OverflowPolicy(self.overflow_policy))
        except ValueError:
            allowed = ", ".join(p.value for p in OverflowPolicy)
            raise ConfigurationError(
                f"overflow_policy must be one of {allowed}, got {self.overflow_policy!r}"
            ) from None

        if self.batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_queue_size < 1:
            raise ConfigurationError(f"max_queue_size must be >= 1, got {self.max_queue_size}")
        if self.batch_size > self.max_queue_size:
            raise ConfigurationError(
                f"batch_size ({self.batch_size}) cannot exceed max_queue_size ({self.max_queue_size})"
            )
        if self.flush_interval <= 0:
            raise ConfigurationError(f"flush_interval must be > 0, got {self.flush_interval}")
        if self.retry_attempts < 1:
            raise ConfigurationError(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        if self.retry_backoff_seconds < 0 or self.retry_backoff_max_seconds < 0:
            raise ConfigurationError("retry backoff values must be >= 0")
        if self.max_concurrent_sends < 1:
            raise ConfigurationError(
                f"max_concurrent_sends must be >= 1, got {self.max_concurrent_sends}"
            )
        if not self.ingest_path.startswith("/"):
            object.__setattr__(self, "ingest_path", f"/{self.ingest_path}")

    @property
    def ingest_url(self) -> str:
        """Full URL batches are posted to."""
        return f"{self.backend_url}{self.ingest_path}"

    @property
    def timeout_seconds(self) -> float:
        """Per-attempt timeout in seconds."""
        return self.timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrackrConfig:
        """Create config from dictionary. Missing keys fall back to env/defaults."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str) -> TrackrConfig:
        """Load config from YAML file."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})
