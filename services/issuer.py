"""
Token issuer: mints access/refresh pairs and keeps the Session store in step
with refresh-token rotation.

Refresh rotation is one-shot: the old token's session is deleted before the
new one is recorded, never updated in place, so a rotated-out token can't be
replayed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from services.sessions import ClientInfo, SessionStore
from services.settings import AuthSettings
from utils.security import ACCESS, REFRESH, TokenCodec, public_claims

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str

    def as_dict(self) -> Dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


def claims_for(user) -> Dict[str, Any]:
    return {"id": user.id, "email": user.email, "name": user.name, "role": user.role}


class TokenIssuer:
    def __init__(self, codec: TokenCodec, sessions: SessionStore, settings: AuthSettings):
        self.codec = codec
        self.sessions = sessions
        self.settings = settings

    def issue_access_only(self, claims: Dict[str, Any], now: Optional[datetime] = None) -> str:
        return self.codec.sign(claims, self.settings.access_token_ttl, ACCESS, now=now)

    def _sign_refresh(self, claims: Dict[str, Any], now: Optional[datetime] = None) -> str:
        return self.codec.sign(claims, self.settings.refresh_token_ttl, REFRESH, now=now)

    def issue_pair(self, claims: Dict[str, Any], now: Optional[datetime] = None) -> TokenPair:
        """Sign both tokens. Persists nothing; see start_session."""
        return TokenPair(
            access_token=self.issue_access_only(claims, now=now),
            refresh_token=self._sign_refresh(claims, now=now),
        )

    def start_session(
        self,
        user,
        client: Optional[ClientInfo] = None,
        now: Optional[datetime] = None,
    ) -> TokenPair:
        """Initial issuance after a login: the pair plus its Session record in session-backed mode."""
        pair = self.issue_pair(claims_for(user), now=now)
        if self.settings.session_backed:
            self.sessions.create(user.id, pair.refresh_token, client, now=now)
        return pair

    def issue_refresh_only(
        self,
        claims: Dict[str, Any],
        old_refresh: Optional[str] = None,
        client: Optional[ClientInfo] = None,
        now: Optional[datetime] = None,
    ) -> str:
        claims = public_claims(claims)
        if old_refresh:
            if not self.sessions.revoke(old_refresh) and self.settings.session_backed:
                # another request rotated this token first; it keeps its claims and carries on
                logger.info("Refresh session for user %s was already retired", claims["id"])
        refresh_token = self._sign_refresh(claims, now=now)
        if self.settings.session_backed:
            self.sessions.create(claims["id"], refresh_token, client, now=now)
        return refresh_token
