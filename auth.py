import hashlib
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional, Tuple

PBKDF2_ROUNDS = 120_000


def session_ttl() -> timedelta:
    return timedelta(hours=float(os.getenv("SESSION_TTL_HOURS", "24")))


def hash_password(password: str, salt: Optional[str] = None) -> Tuple[str, str]:
    salt = salt or secrets.token_hex(8)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ROUNDS)
    return salt, digest.hex()


def verify_password(password: str, salt: str, password_hash: str) -> bool:
    _, test_hash = hash_password(password, salt)
    return secrets.compare_digest(test_hash, password_hash)


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class AuthContext:
    """The caller behind a bearer token."""

    user_id: str
    username: str
    is_admin: bool
    expires_at: datetime

    @classmethod
    def from_session(cls, doc: Mapping[str, Any]) -> "AuthContext":
        return cls(
            user_id=str(doc["userId"]),
            username=doc["username"],
            is_admin=bool(doc.get("isAdmin", False)),
            expires_at=doc["expiresAt"],
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        expires = self.expires_at
        if expires.tzinfo is not None:
            expires = expires.astimezone(timezone.utc).replace(tzinfo=None)
        return now >= expires


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
