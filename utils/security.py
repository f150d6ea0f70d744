"""
security helpers:
- Argon2 password hashing via argon2-cffi
- JWT creation/verification via PyJWT (TokenCodec)
- JTI, OTP, generated-password and token-hash helpers
"""
from __future__ import annotations

import hashlib
import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional

import jwt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

ph = PasswordHasher()

# claims carried by every credential; kept minimal to bound what a leaked token exposes
CLAIM_KEYS = ("id", "email", "name", "role")

ACCESS = "access"
REFRESH = "refresh"

_SPECIAL = "!@#$%^&*()_+-=[]{}|;:,.<>?"


def hash_password(password: str) -> str:
    """Hash a plaintext password using Argon2
    """
    return ph.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """Verify a plaintext password using argon2; False for a missing or corrupt hash.
    """
    if not password_hash or password is None:
        return False
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


def generate_jti() -> str:
    """Generate a unique JTI (JWT ID).
    """
    return str(uuid.uuid4())


def generate_otp() -> str:
    """Six-digit numeric code, uniform over 100000-999999."""
    return str(100000 + secrets.randbelow(900000))


def generate_strong_password(length: int = 16) -> str:
    """Random password with at least one upper, lower, digit and special character."""
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, _SPECIAL]
    alphabet = "".join(pools)
    chars = [secrets.choice(pool) for pool in pools]
    chars += [secrets.choice(alphabet) for _ in range(max(length, len(pools)) - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def public_claims(claims: Dict[str, Any]) -> Dict[str, Any]:
    """Strip registered claims (exp, jti, type...) down to the identity claims."""
    return {key: claims.get(key) for key in CLAIM_KEYS}


class TokenCodec:
    """
    Signs and checks time-limited JWTs.

    verify() never raises: a bad signature, an expired token, a wrong token
    type and plain garbage all come back as None.
    """

    def __init__(self, secret: str, algorithm: str = "HS256", clock=_now):
        self.secret = secret
        self.algorithm = algorithm
        self.clock = clock

    def sign(
        self,
        claims: Dict[str, Any],
        ttl: timedelta,
        token_type: str = ACCESS,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or self.clock()
        payload = public_claims(claims)
        payload.update(
            {
                "type": token_type,
                "jti": generate_jti(),
                "iat": int(now.timestamp()),
                "exp": int((now + ttl).timestamp()),
            }
        )
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(
        self,
        token: Optional[str],
        expected_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Optional[Dict[str, Any]]:
        if not token or not isinstance(token, str):
            return None
        try:
            # expiry is checked against our own clock below so callers can pin "now"
            decoded = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False, "require": ["exp"]},
            )
        except jwt.InvalidTokenError:
            return None

        now = now or self.clock()
        try:
            if int(decoded["exp"]) <= int(now.timestamp()):
                return None
        except (TypeError, ValueError):
            return None
        if expected_type and decoded.get("type") != expected_type:
            return None
        if not decoded.get("id"):
            return None
        return decoded

    def decode(self, token: str) -> Optional[Dict[str, Any]]:
        """Read claims without checking the signature; only after a verify() in the same flow."""
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
