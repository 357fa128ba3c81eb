import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    session_ttl_hours: int
    otp_ttl_seconds: int
    otp_max_attempts: int
    strict_transitions: bool
    login_rate_limit: int
    csrf_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).")


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///pccportal.db"),
        session_ttl_hours=_getenv_int("SESSION_TTL_HOURS", 24),
        otp_ttl_seconds=_getenv_int("OTP_TTL_SECONDS", 300),
        otp_max_attempts=_getenv_int("OTP_MAX_ATTEMPTS", 5),
        strict_transitions=_getenv_bool("STRICT_TRANSITIONS"),
        login_rate_limit=_getenv_int("LOGIN_RATE_LIMIT", 5),
        csrf_enabled=_getenv_bool("CSRF_ENABLED", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "SESSION_TTL_HOURS": s.session_ttl_hours,
        "OTP_TTL_SECONDS": s.otp_ttl_seconds,
        "OTP_MAX_ATTEMPTS": s.otp_max_attempts,
        "STRICT_TRANSITIONS": s.strict_transitions,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "CSRF_ENABLED": s.csrf_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # attachments are metadata only; keep request bodies small
        "MAX_CONTENT_LENGTH": 2 * 1024 * 1024,
    }
