"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class ApiConfig(BaseModel):
    """ClusterEye REST API configuration."""

    base_url: str = "http://localhost:8080/api/v1"
    token: SecretStr = SecretStr("")
    timeout_secs: float = 10.0


class CacheConfig(BaseModel):
    """Series cache configuration."""

    ttl_secs: float = 15.0


class PollingConfig(BaseModel):
    """Poll intervals for every periodic fetch."""

    metrics_interval_ms: int = 30000
    alarm_interval_ms: int = 30000
    alarm_initial_delay_ms: int = 5000
    badge_interval_ms: int = 30000
    job_list_interval_ms: int = 30000
    job_log_interval_ms: int = 5000


class CapacityConfig(BaseModel):
    """Growth predictor window and exhaustion thresholds (days)."""

    lookback_days: float = 7.0
    critical_days: float = 30.0
    warning_days: float = 90.0


class WorkingSetConfig(BaseModel):
    """Working-set-vs-RAM heuristic constants.

    These are calibration choices carried over from the dashboard, not values
    derived from MongoDB internals.
    """

    active_data_fraction: float = 0.25
    mb_per_connection: float = 1.0
    excellent_ratio: float = 0.7
    tight_ratio: float = 0.9


class AlarmsConfig(BaseModel):
    """Alarm notification and badge configuration."""

    recent_limit: int = 4
    notify_severity: str = "critical"
    alarm_views: list[str] = ["/alarms", "/"]
    badge_window_hours: int = 24


class WebhookConfig(BaseModel):
    """Generic JSON webhook channel."""

    enabled: bool = False
    url: SecretStr = SecretStr("")
    min_severity: str = "warning"
    timeout_secs: float = 10.0


class AlertsConfig(BaseModel):
    """Notification dispatch configuration."""

    throttle_secs: float = 30.0
    webhook: WebhookConfig = WebhookConfig()


class DashboardConfig(BaseModel):
    """Read-model HTTP server configuration."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8090
    username: str = ""
    password: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    quiet_loggers: list[str] = ["httpx", "aiohttp.access"]


class Settings(BaseModel):
    """Root settings container."""

    api: ApiConfig = ApiConfig()
    cache: CacheConfig = CacheConfig()
    polling: PollingConfig = PollingConfig()
    capacity: CapacityConfig = CapacityConfig()
    working_set: WorkingSetConfig = WorkingSetConfig()
    alarms: AlarmsConfig = AlarmsConfig()
    alerts: AlertsConfig = AlertsConfig()
    dashboard: DashboardConfig = DashboardConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
