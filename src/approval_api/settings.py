from __future__ import annotations

from dataclasses import dataclass, field
from os import getenv

from approval_engine.config import EngineConfig, LoggingConfig


def _env_bool(name: str) -> bool | None:
    raw = getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return None


def _csv_env(name: str, *, default: str) -> tuple[str, ...]:
    raw = getenv(name, default)
    values = [item.strip() for item in raw.split(",")]
    clean = tuple(item for item in values if item)
    return clean or tuple(item for item in default.split(",") if item)


def _env(name: str, default: str) -> str:
    return getenv(name, default).strip()


@dataclass(frozen=True)
class Settings:
    debug: bool = field(default_factory=lambda: bool(_env_bool("WF_DEBUG")))

    # Event log backend: "redis" in production, "memory" for local demos.
    log_backend: str = field(default_factory=lambda: _env("WF_LOG_BACKEND", "redis").lower())
    redis_url: str = field(default_factory=lambda: _env("WF_REDIS_URL", getenv("REDIS_URL", "redis://127.0.0.1:6379/0")))

    # HTTP server
    host: str = field(default_factory=lambda: _env("WF_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(_env("WF_PORT", "3000")))
    cors_origins: tuple[str, ...] = field(default_factory=lambda: _csv_env("WF_CORS_ORIGINS", default="*"))
    cors_methods: tuple[str, ...] = field(
        default_factory=lambda: _csv_env("WF_CORS_METHODS", default="GET,HEAD,PUT,PATCH,POST,DELETE")
    )

    # Status stream cadence
    push_interval_s: float = field(default_factory=lambda: float(_env("WF_PUSH_INTERVAL_S", "1.0")))

    # Logging
    log_level: str = field(default_factory=lambda: _env("WF_LOG_LEVEL", "INFO").upper())
    log_format: str = field(default_factory=lambda: _env("WF_LOG_FORMAT", "text").lower())

    def engine_config(self) -> EngineConfig:
        return EngineConfig.from_env("WF_")

    def logging_config(self) -> LoggingConfig:
        return LoggingConfig(level=self.log_level, format=self.log_format)  # type: ignore[arg-type]


def get_settings() -> Settings:
    return Settings()
