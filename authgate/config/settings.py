"""Environment-backed application settings with strict validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "JWT_SECRET",
    "OTP_ISSUER_NAME",
    "AUDIT_SERVICE_URL",
)


def _read_env_var(name: str, env: Mapping[str, str | None]) -> str:
    value = env.get(name)
    if value is None or str(value).strip() == "":
        raise RuntimeError(f"Missing required environment variable: {name}")
    return str(value)


def _read_float(name: str, env: Mapping[str, str | None], default: float) -> float:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        raise RuntimeError(f"Invalid numeric value for {name}: {raw}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


def _read_int(name: str, env: Mapping[str, str | None], default: int, minimum: int = 1) -> int:
    raw = env.get(name)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise RuntimeError(f"Invalid integer value for {name}: {raw}") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be at least {minimum}")
    return value


@dataclass(frozen=True)
class Settings:
    database_url: str
    jwt_secret: str
    otp_issuer_name: str
    audit_service_url: str
    audit_connect_timeout_seconds: float = 3.0
    audit_read_timeout_seconds: float = 5.0
    session_ttl_seconds: int = 3600
    pending_session_ttl_seconds: int = 300
    totp_valid_window: int = 1
    app_env: str = "development"


def load_settings(env: Mapping[str, str | None] | None = None) -> Settings:
    """Load and validate environment variables into a Settings object."""
    source_env = os.environ if env is None else env

    missing = [key for key in REQUIRED_ENV_VARS if not str(source_env.get(key) or "").strip()]
    if missing:
        raise RuntimeError(f"Missing required environment variables: {', '.join(missing)}")

    app_env = str(source_env.get("APP_ENV", "development")).strip() or "development"

    settings = Settings(
        database_url=_read_env_var("DATABASE_URL", source_env),
        jwt_secret=_read_env_var("JWT_SECRET", source_env),
        otp_issuer_name=_read_env_var("OTP_ISSUER_NAME", source_env),
        audit_service_url=_read_env_var("AUDIT_SERVICE_URL", source_env).rstrip("/"),
        audit_connect_timeout_seconds=_read_float("AUDIT_CONNECT_TIMEOUT_SECONDS", source_env, 3.0),
        audit_read_timeout_seconds=_read_float("AUDIT_READ_TIMEOUT_SECONDS", source_env, 5.0),
        session_ttl_seconds=_read_int("SESSION_TTL_SECONDS", source_env, 3600),
        pending_session_ttl_seconds=_read_int("PENDING_SESSION_TTL_SECONDS", source_env, 300),
        totp_valid_window=_read_int("TOTP_VALID_WINDOW", source_env, 1, minimum=0),
        app_env=app_env,
    )

    logger.info("Loaded application settings for env=%s", settings.app_env)
    return settings
