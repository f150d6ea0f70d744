"""
One-time codes for email verification and password reset.

Codes live on the User row, one slot per purpose, so issuing a new code
overwrites the previous one. A reset code that matches only opens the
reset_password_verified gate; consume_reset() closes it once the password has
actually been changed.
"""
from __future__ import annotations

import enum
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from services.errors import ExpiredOtp, InvalidOtp, ResetNotVerified
from utils.security import _now, generate_otp

OTP_TTL = timedelta(minutes=10)


class OtpPurpose(str, enum.Enum):
    VERIFICATION = "verification"
    RESET = "reset"


# purpose -> (code column, expiry column)
_FIELDS = {
    OtpPurpose.VERIFICATION: ("email_verification_otp", "email_verification_expiry"),
    OtpPurpose.RESET: ("reset_password_otp", "reset_password_otp_expiry"),
}


@dataclass(frozen=True)
class IssuedOtp:
    code: str
    expires_at: datetime


class OtpEngine:
    def __init__(self, storage, clock=_now, ttl: timedelta = OTP_TTL):
        self.storage = storage
        self.clock = clock
        self.ttl = ttl

    def issue(self, user, purpose: OtpPurpose, now: Optional[datetime] = None) -> IssuedOtp:
        now = now or self.clock()
        code_attr, expiry_attr = _FIELDS[purpose]
        issued = IssuedOtp(code=generate_otp(), expires_at=now + self.ttl)
        setattr(user, code_attr, issued.code)
        setattr(user, expiry_attr, issued.expires_at)
        if purpose is OtpPurpose.RESET:
            user.reset_password_verified = False
        self.storage.new(user)
        self.storage.save()
        return issued

    resend = issue

    def verify(self, user, purpose: OtpPurpose, code: str, now: Optional[datetime] = None) -> None:
        """Raises InvalidOtp or ExpiredOtp; returns None on success."""
        now = now or self.clock()
        code_attr, expiry_attr = _FIELDS[purpose]
        stored = getattr(user, code_attr)
        expires_at = getattr(user, expiry_attr)

        if not stored or not expires_at:
            raise InvalidOtp()
        if now > expires_at:
            raise ExpiredOtp()
        presented = str(code or "")
        if not presented.isascii():
            raise InvalidOtp()
        if not hmac.compare_digest(stored.encode("ascii"), presented.encode("ascii")):
            raise InvalidOtp()

        if purpose is OtpPurpose.VERIFICATION:
            setattr(user, code_attr, None)
            setattr(user, expiry_attr, None)
            user.email_verified = True
        else:
            user.reset_password_verified = True
        self.storage.new(user)
        self.storage.save()

    def consume_reset(self, user) -> None:
        """Close the reset gate. The caller changes the password in the same unit of work."""
        if not user.reset_password_verified:
            raise ResetNotVerified()
        user.reset_password_otp = None
        user.reset_password_otp_expiry = None
        user.reset_password_verified = False
        self.storage.new(user)
