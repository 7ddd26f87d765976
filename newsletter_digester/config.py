from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


def _env_str(name: str, default: str | None = None) -> str:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return value


def _env_int(name: str, default: int | None = None) -> int:
    value = os.getenv(name)
    if value is None:
        if default is None:
            raise RuntimeError(f"Missing required env: {name}")
        return default
    return int(value)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().lower()
    return value in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Config:
    # Storage
    sqlite_path: Path

    # Fetching
    http_timeout_seconds: int
    user_agent: str

    # AI
    ai_timeout_seconds: int

    # Scheduling
    schedule_timezone: str
    cleanup_schedule: str

    # Metrics / status
    metrics_enabled: bool
    metrics_bind: str
    metrics_port: int
    status_json_path: Path

    # Logging
    log_level: str
    log_file: str


def load_config() -> Config:
    return Config(
        sqlite_path=Path(_env_str("SQLITE_PATH", "data/digester.db")),
        http_timeout_seconds=_env_int("HTTP_TIMEOUT_SECONDS", 30),
        user_agent=_env_str(
            "USER_AGENT",
            "Mozilla/5.0 (compatible; NewsletterDigester/1.0)",
        ),
        ai_timeout_seconds=_env_int("AI_TIMEOUT_SECONDS", 120),
        schedule_timezone=_env_str("SCHEDULE_TIMEZONE", ""),
        cleanup_schedule=_env_str("CLEANUP_SCHEDULE", "0 0 * * *"),
        metrics_enabled=_env_bool("METRICS_ENABLED", False),
        metrics_bind=_env_str("METRICS_BIND", "127.0.0.1"),
        metrics_port=_env_int("METRICS_PORT", 9108),
        status_json_path=Path(_env_str("STATUS_JSON_PATH", "data/status.json")),
        log_level=_env_str("LOG_LEVEL", "INFO"),
        log_file=_env_str("LOG_FILE", ""),
    )
