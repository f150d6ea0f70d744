"""
Immutable auth settings, frozen from the Flask config at app creation and
handed to every component's constructor.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping

DEFAULT_ACCESS_TTL_MS = 15 * 60 * 1000
DEFAULT_REFRESH_TTL_MS = 7 * 24 * 60 * 60 * 1000


def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class AuthSettings:
    jwt_secret: str
    jwt_algorithm: str = "HS256"
    access_token_ttl_ms: int = DEFAULT_ACCESS_TTL_MS
    refresh_token_ttl_ms: int = DEFAULT_REFRESH_TTL_MS
    email_verification_required: bool = False
    session_backed: bool = True
    username_max_attempts: int = 10
    cookie_secure: bool = False
    mail_async: bool = True

    @property
    def access_token_ttl(self) -> timedelta:
        return timedelta(milliseconds=self.access_token_ttl_ms)

    @property
    def refresh_token_ttl(self) -> timedelta:
        return timedelta(milliseconds=self.refresh_token_ttl_ms)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "AuthSettings":
        """Build from a Flask config (or any mapping); bad numbers fall back to defaults."""
        return cls(
            jwt_secret=config["JWT_SECRET"],
            jwt_algorithm=config.get("JWT_ALGORITHM", "HS256"),
            access_token_ttl_ms=_as_int(
                config.get("ACCESS_TOKEN_EXPIRATION_MS"), DEFAULT_ACCESS_TTL_MS
            ),
            refresh_token_ttl_ms=_as_int(
                config.get("REFRESH_TOKEN_EXPIRATION_MS"), DEFAULT_REFRESH_TTL_MS
            ),
            email_verification_required=_as_bool(config.get("EMAIL_VERIFICATION_REQUIRED")),
            session_backed=_as_bool(config.get("SESSION_BACKED"), default=True),
            username_max_attempts=_as_int(config.get("USERNAME_MAX_ATTEMPTS"), 10),
            cookie_secure=_as_bool(config.get("COOKIE_SECURE")),
            mail_async=_as_bool(config.get("MAIL_ASYNC"), default=True),
        )
