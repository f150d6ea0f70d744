"""
Session store adapter: persists refresh grants per user/device and revokes them.

Only the SHA-256 of a refresh token is stored. Revocation is a bulk DELETE
whose row count tells the caller whether it actually removed anything; during
a concurrent rotation the second deleter simply sees 0.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from models.session import Session
from services.settings import AuthSettings
from utils.security import _now, hash_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientInfo:
    device_info: Optional[str] = None
    ip_address: Optional[str] = None


class SessionStore:
    def __init__(self, storage, settings: AuthSettings, clock=_now):
        self.storage = storage
        self.settings = settings
        self.clock = clock

    def _query(self):
        return self.storage.get_session().query(Session)

    def create(
        self,
        user_id: str,
        refresh_token: str,
        client: Optional[ClientInfo] = None,
        now: Optional[datetime] = None,
    ) -> Session:
        now = now or self.clock()
        client = client or ClientInfo()
        record = Session(
            user_id=user_id,
            refresh_token_hash=hash_token(refresh_token),
            device_info=(client.device_info or "")[:512] or None,
            ip_address=client.ip_address,
            created_at=now,
            last_activity=now,
            expires_at=now + self.settings.refresh_token_ttl,
        )
        self.storage.new(record)
        self.storage.save()
        return record

    def find_live(
        self,
        refresh_token: str,
        user_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Session]:
        now = now or self.clock()
        query = self._query().filter(Session.refresh_token_hash == hash_token(refresh_token))
        if user_id is not None:
            query = query.filter(Session.user_id == user_id)
        record = query.first()
        if record is None or record.expires_at <= now:
            return None
        return record

    def touch(self, record: Session, now: Optional[datetime] = None) -> None:
        record.last_activity = now or self.clock()
        self.storage.new(record)
        self.storage.save()

    def revoke(self, refresh_token: str) -> bool:
        """Delete the session behind refresh_token. False when nothing matched."""
        deleted = (
            self._query()
            .filter(Session.refresh_token_hash == hash_token(refresh_token))
            .delete(synchronize_session=False)
        )
        self.storage.save()
        return deleted > 0

    def revoke_by_id(self, user_id: str, session_id: str) -> bool:
        deleted = (
            self._query()
            .filter(Session.user_id == user_id, Session.id == session_id)
            .delete(synchronize_session=False)
        )
        self.storage.save()
        return deleted > 0

    def revoke_all(self, user_id: str) -> int:
        deleted = self._query().filter(Session.user_id == user_id).delete(synchronize_session=False)
        self.storage.save()
        logger.info("Revoked %d session(s) for user %s", deleted, user_id)
        return deleted

    def list_for_user(self, user_id: str, now: Optional[datetime] = None) -> List[Session]:
        now = now or self.clock()
        return (
            self._query()
            .filter(Session.user_id == user_id, Session.expires_at > now)
            .order_by(Session.last_activity.desc())
            .all()
        )

