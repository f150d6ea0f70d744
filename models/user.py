import enum

from models.base_model import Base, BaseModel, UTCDateTime
from sqlalchemy import Column, String, Boolean
from sqlalchemy.orm import relationship


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPERADMIN = "SUPERADMIN"


class User(BaseModel, Base):
    __tablename__ = "users"

    email = Column(String(255), nullable=False, unique=True, index=True)
    username = Column(String(64), nullable=True, unique=True, index=True)
    password_hash = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    avatar = Column(String(1024), nullable=True)
    role = Column(String(20), nullable=False, default=Role.USER.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # external identities, one column per supported provider
    google_id = Column(String(128), nullable=True, unique=True)
    discord_id = Column(String(128), nullable=True, unique=True)

    email_verification_otp = Column(String(6), nullable=True)
    email_verification_expiry = Column(UTCDateTime, nullable=True)
    reset_password_otp = Column(String(6), nullable=True)
    reset_password_otp_expiry = Column(UTCDateTime, nullable=True)
    reset_password_verified = Column(Boolean, nullable=False, default=False)

    sessions = relationship(
        "Session",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __init__(self, *args, **kwargs):
        # column defaults only land at INSERT; set them now so fresh objects read correctly
        kwargs.setdefault("role", Role.USER.value)
        kwargs.setdefault("is_active", True)
        kwargs.setdefault("email_verified", False)
        kwargs.setdefault("reset_password_verified", False)
        super().__init__(*args, **kwargs)

    @property
    def password(self):
        raise AttributeError("Password: Write-only field")

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)
