from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

_THIRTY_DAYS = 30 * 24 * 60 * 60


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int, *, minimum: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(float(raw)) if raw else default
    except ValueError:
        value = default
    return max(value, minimum)


@dataclass(frozen=True)
class AuthConfig:
    # Session credential signing
    session_secret: Optional[str]  # Required to mint/verify credentials
    session_ttl_seconds: int

    # One-time codes
    otp_ttl_seconds: int
    dev_expose_codes: bool  # Echo undelivered codes in API responses (non-production only)

    # Registration policy
    min_password_length: int

    # Attempt limiting (login + code verification)
    max_attempts: int
    attempt_window_seconds: int


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    AUTH_SESSION_SECRET must be set for login/verification to mint credentials and for
    protected endpoints to accept them.
    """
    return AuthConfig(
        session_secret=(os.getenv("AUTH_SESSION_SECRET", "") or "").strip() or None,
        session_ttl_seconds=_env_int("AUTH_SESSION_TTL_SECONDS", _THIRTY_DAYS, minimum=60),
        otp_ttl_seconds=_env_int("AUTH_OTP_TTL_SECONDS", 600, minimum=30),
        dev_expose_codes=_env_bool("AUTH_DEV_EXPOSE_CODES", False),
        min_password_length=_env_int("AUTH_MIN_PASSWORD_LENGTH", 6, minimum=0),
        max_attempts=_env_int("AUTH_MAX_ATTEMPTS", 5, minimum=1),
        attempt_window_seconds=_env_int("AUTH_ATTEMPT_WINDOW_SECONDS", 300, minimum=1),
    )
