from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote_plus


SUPPORTED_APP_ENVS = {"SIT", "UAT"}
SUPPORTED_NOTIFICATION_PROVIDERS = {"mock", "fcm"}
SUPPORTED_AUDIT_SINKS = {"memory", "database"}


def _current_app_env() -> str:
    raw = os.getenv("APP_ENV", "SIT").strip().upper()
    if not raw:
        return "SIT"
    if raw not in SUPPORTED_APP_ENVS:
        raise ValueError(f"Invalid APP_ENV: {raw}. Supported values: {sorted(SUPPORTED_APP_ENVS)}")
    return raw


def _get_first_set(*env_names: str) -> str:
    for env_name in env_names:
        value = os.getenv(env_name, "").strip()
        if value:
            return value
    return ""


def _env_scoped(name: str) -> str:
    return _get_first_set(f"{_current_app_env()}_{name}", name)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


def _env_choice(name: str, default: str, allowed: set[str]) -> str:
    raw = os.getenv(name, default).strip().lower() or default
    if raw not in allowed:
        raise ValueError(f"Invalid {name}: {raw}. Supported values: {sorted(allowed)}")
    return raw


def _normalize_database_url(raw_url: str) -> str:
    if not raw_url:
        return raw_url
    if raw_url.startswith("postgres://"):
        return raw_url.replace("postgres://", "postgresql+psycopg2://", 1)
    if raw_url.startswith("postgresql://") and "+" not in raw_url.split("://", 1)[0]:
        return raw_url.replace("postgresql://", "postgresql+psycopg2://", 1)
    return raw_url


def _build_database_url() -> str:
    explicit = _env_scoped("DATABASE_URL")
    if explicit:
        return _normalize_database_url(explicit)

    host = _env_scoped("PGHOST")
    port = _env_scoped("PGPORT") or "5432"
    user = _env_scoped("PGUSER")
    password = _env_scoped("PGPASSWORD")
    database = _env_scoped("PGDATABASE")
    if host and user and database:
        return f"postgresql+psycopg2://{user}:{quote_plus(password)}@{host}:{port}/{database}"

    # Local dev fallback when no database is configured.
    sqlite_file = Path(os.getenv("SQLITE_DB_PATH", "./social_push.db")).as_posix()
    if sqlite_file.startswith("/"):
        return f"sqlite:///{sqlite_file}"
    return f"sqlite:///./{sqlite_file.lstrip('./')}"


@dataclass(frozen=True)
class Settings:
    app_env: str = _current_app_env()
    app_name: str = os.getenv("APP_NAME", "social_push")
    app_debug: bool = _env_bool("APP_DEBUG", "false")
    app_host: str = os.getenv("APP_HOST", "0.0.0.0")
    app_port: int = int(os.getenv("APP_PORT", "8010"))

    database_url: str = _build_database_url()
    db_schema: str = _env_scoped("DB_SCHEMA") or "social_push"

    notification_provider: str = _env_choice("NOTIFICATION_PROVIDER", "mock", SUPPORTED_NOTIFICATION_PROVIDERS)
    fcm_project_id: str = os.getenv("FCM_PROJECT_ID", "")
    fcm_credentials: str = _get_first_set("FCM_CREDENTIALS", "GOOGLE_APPLICATION_CREDENTIALS")
    android_channel_id: str = os.getenv("ANDROID_CHANNEL_ID", "social")

    gateway_timeout_seconds: float = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))
    dispatch_max_retries: int = int(os.getenv("DISPATCH_MAX_RETRIES", "2"))
    dispatch_backoff_base_seconds: float = float(os.getenv("DISPATCH_BACKOFF_BASE_SECONDS", "1"))
    dispatch_batch_size: int = int(os.getenv("DISPATCH_BATCH_SIZE", "500"))

    rate_limit_per_minute: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
    rate_limit_per_hour: int = int(os.getenv("RATE_LIMIT_PER_HOUR", "1000"))
    rate_limit_per_day: int = int(os.getenv("RATE_LIMIT_PER_DAY", "10000"))
    rate_limit_cleanup_interval_seconds: int = int(os.getenv("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "300"))

    token_cache_ttl_seconds: int = int(os.getenv("TOKEN_CACHE_TTL_SECONDS", "300"))
    token_cache_cleanup_interval_seconds: int = int(os.getenv("TOKEN_CACHE_CLEANUP_INTERVAL_SECONDS", "600"))
    token_retention_days: int = int(os.getenv("TOKEN_RETENTION_DAYS", "30"))
    token_sweep_interval_minutes: int = int(os.getenv("TOKEN_SWEEP_INTERVAL_MINUTES", "1440"))
    housekeeping_scheduler_enabled: bool = _env_bool("HOUSEKEEPING_SCHEDULER_ENABLED", "true")

    audit_sink: str = _env_choice("AUDIT_SINK", "memory", SUPPORTED_AUDIT_SINKS)
    audit_ring_size: int = int(os.getenv("AUDIT_RING_SIZE", "10000"))

    error_rate_threshold_percent: float = float(os.getenv("ERROR_RATE_THRESHOLD_PERCENT", "25"))
    error_rate_window_minutes: int = int(os.getenv("ERROR_RATE_WINDOW_MINUTES", "60"))
    error_alert_cooldown_minutes: int = int(os.getenv("ERROR_ALERT_COOLDOWN_MINUTES", "15"))
    critical_error_threshold: int = int(os.getenv("CRITICAL_ERROR_THRESHOLD", "5"))


settings = Settings()


def get_settings() -> Settings:
    return settings
