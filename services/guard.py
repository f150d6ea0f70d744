"""
Dual-token verification guard.

Every request presents (possibly absent) access and refresh tokens. Each is
judged valid or invalid on its own, and the pair decides the outcome:

    access   refresh   outcome
    invalid  invalid   Reject
    invalid  valid     rotate both, authorize with the refresh claims
    valid    invalid   rotate refresh only, authorize with the access claims
    valid    valid     Authorize with the access claims

evaluate() only returns a Decision; writing headers and cookies is left to
the HTTP layer (utils/decorators.py). Rotation touches the session store, and
any failure there turns into a Reject.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Union

from services.issuer import TokenIssuer
from services.sessions import ClientInfo, SessionStore
from services.settings import AuthSettings
from utils.security import ACCESS, REFRESH, TokenCodec, public_claims

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PresentedCredentials:
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    client: ClientInfo = field(default_factory=ClientInfo)

    @property
    def is_empty(self) -> bool:
        return not self.access_token and not self.refresh_token


@dataclass(frozen=True)
class Reject:
    reason: str


@dataclass(frozen=True)
class Authorize:
    claims: Dict[str, Any]


@dataclass(frozen=True)
class AuthorizeAndRotate:
    claims: Dict[str, Any]
    new_access: Optional[str] = None
    new_refresh: Optional[str] = None


Decision = Union[Reject, Authorize, AuthorizeAndRotate]


def check_roles(required_roles: Iterable[str], actual_role: Optional[str]) -> bool:
    """Allow when no role is required or the actual role is one of the required ones."""
    required = {str(r) for r in (required_roles or ())}
    if not required:
        return True
    return actual_role is not None and str(actual_role) in required


class DualTokenGuard:
    def __init__(
        self,
        codec: TokenCodec,
        issuer: TokenIssuer,
        sessions: SessionStore,
        settings: AuthSettings,
    ):
        self.codec = codec
        self.issuer = issuer
        self.sessions = sessions
        self.settings = settings

    def _access_valid(self, token: Optional[str], now: datetime) -> bool:
        return self.codec.verify(token, expected_type=ACCESS, now=now) is not None

    def _live_refresh_session(self, token: Optional[str], now: datetime):
        """
        Returns (valid, session). In session-backed mode a signed, unexpired
        refresh token also needs a live session record; without one it is
        treated exactly like a forged token.
        """
        claims = self.codec.verify(token, expected_type=REFRESH, now=now)
        if claims is None:
            return False, None
        if not self.settings.session_backed:
            return True, None
        try:
            record = self.sessions.find_live(token, user_id=claims["id"], now=now)
        except Exception:
            logger.exception("Session lookup failed; treating refresh token as invalid")
            return False, None
        return record is not None, record

    def _retirable(self, refresh_token: Optional[str], claims: Dict[str, Any]) -> Optional[str]:
        """The stale refresh token, but only if it was minted for the same user."""
        if not refresh_token:
            return None
        stale = self.codec.decode(refresh_token)
        if not stale or stale.get("id") != claims.get("id"):
            return None
        return refresh_token

    def _rollback(self) -> None:
        try:
            self.sessions.storage.rollback()
        except Exception:
            logger.warning("Rollback after failed rotation also failed", exc_info=True)

    def evaluate(self, presented: PresentedCredentials, now: Optional[datetime] = None) -> Decision:
        now = now or self.codec.clock()
        access_ok = self._access_valid(presented.access_token, now)
        refresh_ok, record = self._live_refresh_session(presented.refresh_token, now)

        if not access_ok and not refresh_ok:
            if presented.is_empty:
                return Reject("No credentials presented")
            return Reject("Both tokens are invalid")

        if not access_ok:
            try:
                claims = public_claims(self.codec.decode(presented.refresh_token))
                new_access = self.issuer.issue_access_only(claims, now=now)
                new_refresh = self.issuer.issue_refresh_only(
                    claims, presented.refresh_token, presented.client, now=now
                )
            except Exception:
                logger.exception("Access token regeneration failed")
                self._rollback()
                return Reject("Token rotation failed")
            return AuthorizeAndRotate(claims, new_access=new_access, new_refresh=new_refresh)

        claims = public_claims(self.codec.decode(presented.access_token))

        if not refresh_ok:
            try:
                new_refresh = self.issuer.issue_refresh_only(
                    claims, self._retirable(presented.refresh_token, claims), presented.client, now=now
                )
            except Exception:
                logger.exception("Refresh token regeneration failed")
                self._rollback()
                return Reject("Token rotation failed")
            return AuthorizeAndRotate(claims, new_refresh=new_refresh)

        if record is not None:
            try:
                self.sessions.touch(record, now=now)
            except Exception:
                # last_activity is bookkeeping; the request is already authorized
                logger.warning("Could not update session activity for %s", record.id, exc_info=True)
        return Authorize(claims)
