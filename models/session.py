"""
Session model: the revocable server-side counterpart of an issued refresh token.
Fields:
- user_id (String(36)) - FK to users.id
- refresh_token_hash - SHA-256 of the refresh token, never the raw value
- device_info / ip_address - client descriptor captured at issuance
- last_activity, expires_at
"""
from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import relationship

from models.base_model import BaseModel, Base, UTCDateTime


class Session(BaseModel, Base):
    __tablename__ = "sessions"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    refresh_token_hash = Column(String(64), nullable=False, unique=True, index=True)
    device_info = Column(String(512), nullable=True)
    ip_address = Column(String(64), nullable=True)
    last_activity = Column(UTCDateTime, nullable=True)
    expires_at = Column(UTCDateTime, nullable=False)

    user = relationship("User", back_populates="sessions")

    def __repr__(self):
        return f"<Session id={self.id} user={self.user_id}>"
