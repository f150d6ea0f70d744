"""Username normalization and collision-free allocation."""
from __future__ import annotations

import re
import secrets

from models.user import User
from services.errors import Conflict

_WHITESPACE = re.compile(r"\s+")


def normalize_username(raw) -> str:
    """Lowercase and drop all whitespace; empty input falls back to 'user'."""
    value = _WHITESPACE.sub("", str(raw or "")).lower()
    return value or "user"


class UsernameAllocator:
    def __init__(self, storage, max_attempts: int = 10, suffix=None):
        self.storage = storage
        self.max_attempts = max_attempts
        self.suffix = suffix or (lambda: str(secrets.randbelow(100000)))

    def is_taken(self, username: str) -> bool:
        session = self.storage.get_session()
        return session.query(User.id).filter(User.username == username).first() is not None

    def allocate(self, base) -> str:
        """Return base if free, else base plus a random number, retried up to max_attempts."""
        base = normalize_username(base)
        candidate = base
        for _ in range(self.max_attempts + 1):
            if not self.is_taken(candidate):
                return candidate
            candidate = f"{base}{self.suffix()}"
        raise Conflict("Could not allocate a unique username", details={"field": "username"})
