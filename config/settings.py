"""
Configuration loader for the health-jobs worker.
Reads settings from a YAML file with environment variable substitution.

Lookup order:
  1. explicit path passed to load_settings()
  2. $HEALTH_JOBS_CONFIG
  3. config/settings.yaml next to this module

When APP_ENV is set, config/settings.<APP_ENV>.yaml is merged on top.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class AppConfig:
    name: str = "DimDim Health"
    environment: str = "dev"
    frontend_url: str = "http://localhost:5173"
    base_url: str = "http://localhost:3000"


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    queue_key: str = "jobs"
    pop_timeout: float = 5.0            # BLPOP timeout, doubles as the shutdown-check tick
    error_backoff: float = 1.0          # seconds to wait after a transport error on pop
    dead_letter_key: str = ""           # empty disables the dead-letter list


@dataclass
class WorkerConfig:
    worker_id: str = "worker-1"
    pool_size: int = 4
    shutdown_grace: float = 10.0


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./health_jobs.db"    # postgresql:// | sqlite://
    echo: bool = False


@dataclass
class WindowConfig:
    """Calendar trigger window. Unset fields match any value."""
    month: Optional[int] = None
    day: Optional[int] = None
    weekday: Optional[int] = None       # 0 = Monday
    hour: int = 9
    minute: int = 0
    window_minutes: int = 5
    enabled: bool = True


@dataclass
class SchedulerConfig:
    enabled: bool = True
    poll_interval: float = 300.0
    timezone: str = "UTC"
    monthly: WindowConfig = field(default_factory=lambda: WindowConfig(day=1))
    weekly: WindowConfig = field(default_factory=lambda: WindowConfig(weekday=0))
    yearly: WindowConfig = field(default_factory=lambda: WindowConfig(month=1, day=1))


@dataclass
class MailConfig:
    provider: str = "memory"            # "mailgun" | "memory"
    from_email: str = "postmaster@example.com"
    from_name: str = "DimDim Health"
    mailgun_domain: str = ""
    mailgun_api_key: str = ""
    mailgun_api_base: str = "https://api.mailgun.net"
    timeout: float = 15.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class TelemetryConfig:
    otlp_endpoint: str = ""             # empty keeps spans in-process (no exporter)
    service_name: str = "dimdim-health-worker"
    export_timeout: float = 3.0


@dataclass
class Settings:
    app: AppConfig = field(default_factory=AppConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    workers: WorkerConfig = field(default_factory=WorkerConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    mail: MailConfig = field(default_factory=MailConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _read_yaml(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _section(cls, raw: Optional[dict[str, Any]], default):
    """Build a dataclass section, keeping defaults for keys absent from YAML."""
    if not raw:
        return default
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    return cls(**{**default.__dict__, **known})


def _window(raw: Optional[dict[str, Any]], default: WindowConfig) -> WindowConfig:
    return _section(WindowConfig, raw, default)


def settings_from_dict(raw: dict[str, Any]) -> Settings:
    """Map a raw (already env-substituted) mapping onto Settings."""
    settings = Settings()
    settings.app = _section(AppConfig, raw.get("app"), settings.app)
    settings.queue = _section(QueueConfig, raw.get("queue"), settings.queue)
    settings.workers = _section(WorkerConfig, raw.get("workers"), settings.workers)
    settings.database = _section(DatabaseConfig, raw.get("database"), settings.database)
    settings.mail = _section(MailConfig, raw.get("mail"), settings.mail)
    settings.logging = _section(LoggingConfig, raw.get("logging"), settings.logging)
    settings.telemetry = _section(TelemetryConfig, raw.get("telemetry"), settings.telemetry)

    if "scheduler" in raw:
        sc = raw["scheduler"] or {}
        defaults = SchedulerConfig()
        settings.scheduler = SchedulerConfig(
            enabled=sc.get("enabled", defaults.enabled),
            poll_interval=float(sc.get("poll_interval", defaults.poll_interval)),
            timezone=sc.get("timezone", defaults.timezone),
            monthly=_window(sc.get("monthly"), defaults.monthly),
            weekly=_window(sc.get("weekly"), defaults.weekly),
            yearly=_window(sc.get("yearly"), defaults.yearly),
        )

    # Process-level overrides, mirroring how workers are scaled in deployment
    if os.environ.get("NUM_WORKERS", "").isdigit():
        settings.workers.pool_size = int(os.environ["NUM_WORKERS"])
    if os.environ.get("WORKER_ID"):
        settings.workers.worker_id = os.environ["WORKER_ID"]
    if os.environ.get("OTLP_ENDPOINT"):
        settings.telemetry.otlp_endpoint = os.environ["OTLP_ENDPOINT"]

    return settings


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file (plus APP_ENV overlay)."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "HEALTH_JOBS_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    path = Path(config_path)
    raw: dict[str, Any] = _read_yaml(path) if path.exists() else {}

    env = os.environ.get("APP_ENV")
    if env:
        overlay = path.with_name(f"{path.stem}.{env}{path.suffix}")
        if overlay.exists():
            raw = _deep_merge(raw, _read_yaml(overlay))

    settings = settings_from_dict(_process_values(raw))
    if env:
        settings.app.environment = env

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
