"""
Engine configuration.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Literal

from .errors import ConfigError

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["text", "json"]


def _default_consumer_name() -> str:
    return f"worker_{os.getpid()}"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: LogLevel = "INFO"
    format: LogFormat = "text"

    def __post_init__(self):
        """Validate configuration after initialization."""
        valid_levels = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        if self.level not in valid_levels:
            raise ConfigError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")
        valid_formats = ("text", "json")
        if self.format not in valid_formats:
            raise ConfigError(f"Invalid log format: {self.format}. Must be one of {valid_formats}")


@dataclass
class EngineConfig:
    """Configuration for one engine instance.

    Attributes:
        stream_key: Stream holding workflow events
        group_name: Consumer group shared by all engine instances
        consumer_name: This instance's identity within the group
        max_len: Approximate retention cap applied on append
        block_ms: Bounded wait of one blocking group read
        error_backoff_s: Sleep after a failed group read
        sweep_interval_s: Period of the recovery sweep
        min_idle_ms: Idle time after which a pending entry may be reclaimed
        claim_count: Maximum entries reclaimed per sweep
        read_count: Maximum entries per group read (None = server default)
        board_size: Number of recent events shown on the board
        pending_scan: Maximum pending rows inspected per board build (at least board_size)
        handler_delay_s: Simulated work per event in the default handlers
    """

    stream_key: str = "workflow:document_stream"
    group_name: str = "approval_workers_group"
    consumer_name: str = field(default_factory=_default_consumer_name)

    max_len: int = 10000
    approximate_trim: bool = True

    block_ms: int = 5000
    read_count: int | None = None
    error_backoff_s: float = 2.0

    sweep_interval_s: float = 60.0
    min_idle_ms: int = 60000
    claim_count: int = 50

    board_size: int = 50
    pending_scan: int = 100

    handler_delay_s: float = 0.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.stream_key:
            raise ConfigError("stream_key must not be empty")
        if not self.group_name:
            raise ConfigError("group_name must not be empty")
        if not self.consumer_name:
            raise ConfigError("consumer_name must not be empty")
        if self.max_len <= 0:
            raise ConfigError("max_len must be positive")
        if self.block_ms <= 0:
            raise ConfigError("block_ms must be positive")
        if self.read_count is not None and self.read_count <= 0:
            raise ConfigError("read_count must be positive")
        if self.error_backoff_s < 0:
            raise ConfigError("error_backoff_s cannot be negative")
        if self.sweep_interval_s <= 0:
            raise ConfigError("sweep_interval_s must be positive")
        if self.min_idle_ms < 0:
            raise ConfigError("min_idle_ms cannot be negative")
        if self.claim_count <= 0:
            raise ConfigError("claim_count must be positive")
        if self.board_size <= 0:
            raise ConfigError("board_size must be positive")
        if self.pending_scan < self.board_size:
            raise ConfigError("pending_scan must cover board_size")
        if self.handler_delay_s < 0:
            raise ConfigError("handler_delay_s cannot be negative")

    @classmethod
    def from_env(cls, prefix: str = "WF_") -> EngineConfig:
        """
        Load engine settings from environment variables.

        Example:
            WF_STREAM_KEY=workflow:document_stream
            WF_CONSUMER_NAME=worker_a
            WF_SWEEP_INTERVAL_S=30
        """
        kwargs: dict[str, object] = {}

        if value := os.getenv(f"{prefix}STREAM_KEY"):
            kwargs["stream_key"] = value
        if value := os.getenv(f"{prefix}GROUP_NAME"):
            kwargs["group_name"] = value
        if value := os.getenv(f"{prefix}CONSUMER_NAME"):
            kwargs["consumer_name"] = value

        int_fields = {
            "MAX_LEN": "max_len",
            "BLOCK_MS": "block_ms",
            "READ_COUNT": "read_count",
            "MIN_IDLE_MS": "min_idle_ms",
            "CLAIM_COUNT": "claim_count",
            "BOARD_SIZE": "board_size",
            "PENDING_SCAN": "pending_scan",
        }
        float_fields = {
            "ERROR_BACKOFF_S": "error_backoff_s",
            "SWEEP_INTERVAL_S": "sweep_interval_s",
            "HANDLER_DELAY_S": "handler_delay_s",
        }

        try:
            for env_name, attr in int_fields.items():
                if value := os.getenv(f"{prefix}{env_name}"):
                    kwargs[attr] = int(value)
            for env_name, attr in float_fields.items():
                if value := os.getenv(f"{prefix}{env_name}"):
                    kwargs[attr] = float(value)
        except ValueError as e:
            raise ConfigError(f"Invalid numeric setting: {e}", cause=e) from e

        if value := os.getenv(f"{prefix}APPROXIMATE_TRIM"):
            kwargs["approximate_trim"] = value.strip().lower() in {"1", "true", "yes", "on"}

        return cls(**kwargs)  # type: ignore[arg-type]


__all__ = ["EngineConfig", "LoggingConfig", "LogLevel", "LogFormat"]
