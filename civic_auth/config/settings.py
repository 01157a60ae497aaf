"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = ("DATABASE_URL",)

OPTIONAL_INT_DEFAULTS = {
    "LOGIN_RATE_LIMIT_MAX_ATTEMPTS": 5,
    "LOGIN_RATE_LIMIT_WINDOW_MS": 15 * 60 * 1000,
    "PASSWORD_RESET_RATE_LIMIT_MAX_ATTEMPTS": 3,
    "PASSWORD_RESET_RATE_LIMIT_WINDOW_MS": 60 * 60 * 1000,
    "USERNAME_RECOVERY_RATE_LIMIT_MAX_ATTEMPTS": 3,
    "USERNAME_RECOVERY_RATE_LIMIT_WINDOW_MS": 60 * 60 * 1000,
    "SESSION_TTL_SECONDS": 7 * 24 * 60 * 60,
    "PASSWORD_RESET_TOKEN_TTL_SECONDS": 60 * 60,
    "EMAIL_VERIFICATION_TOKEN_TTL_SECONDS": 24 * 60 * 60,
    "MAX_FAILED_LOGIN_ATTEMPTS": 5,
    "ACCOUNT_LOCKOUT_MINUTES": 30,
    "SECURITY_EVENT_RETENTION_DAYS": 730,
    "DB_POOL_SIZE": 10,
    "DB_TIMEOUT_SECONDS": 5,
    "HEALTH_CHECK_TIMEOUT_SECONDS": 3,
}


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_int(name: str, env: Mapping[str, str | None]) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return OPTIONAL_INT_DEFAULTS[name]
    try:
        value = int(str(raw).strip())
    except ValueError as exc:
        raise RuntimeError(f"Environment variable {name} must be an integer, got {raw!r}") from exc
    if value <= 0:
        raise RuntimeError(f"Environment variable {name} must be positive, got {value}")
    return value


def _read_optional(name: str, env: Mapping[str, str | None]) -> str | None:
    value = str(env.get(name) or "").strip()
    return value or None


def _read_flag(name: str, env: Mapping[str, str | None]) -> bool:
    return str(env.get(name) or "false").strip().lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    database_url: str
    app_env: str = "development"
    log_level: str = "INFO"
    auto_create_schema: bool = False
    mail_relay_url: str | None = None
    mail_relay_api_key: str | None = None
    login_rate_limit_max_attempts: int = 5
    login_rate_limit_window_ms: int = 15 * 60 * 1000
    password_reset_rate_limit_max_attempts: int = 3
    password_reset_rate_limit_window_ms: int = 60 * 60 * 1000
    username_recovery_rate_limit_max_attempts: int = 3
    username_recovery_rate_limit_window_ms: int = 60 * 60 * 1000
    session_ttl_seconds: int = 7 * 24 * 60 * 60
    password_reset_token_ttl_seconds: int = 60 * 60
    email_verification_token_ttl_seconds: int = 24 * 60 * 60
    max_failed_login_attempts: int = 5
    account_lockout_minutes: int = 30
    security_event_retention_days: int = 730
    db_pool_size: int = 10
    db_timeout_seconds: int = 5
    health_check_timeout_seconds: int = 3


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    app_env = str(source_env.get("APP_ENV", "development")).strip() or "development"
    log_level = str(source_env.get("LOG_LEVEL", "INFO")).strip().upper() or "INFO"

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        app_env=app_env,
        log_level=log_level,
        auto_create_schema=_read_flag("AUTO_CREATE_SCHEMA", source_env),
        mail_relay_url=_read_optional("MAIL_RELAY_URL", source_env),
        mail_relay_api_key=_read_optional("MAIL_RELAY_API_KEY", source_env),
        **{name.lower(): _read_int(name, source_env) for name in OPTIONAL_INT_DEFAULTS},
    )

    logger.info("Loaded application settings for env=%s", settings.app_env)
    return settings
