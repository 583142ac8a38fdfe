"""
security.py: password hashing, session tokens and reset codes.

- Passwords and reset codes are only ever stored as one-way hashes (passlib).
- Sessions are stateless signed tokens (python-jose, HS256). A decoded token
  proves who the caller was at issue time only; dependencies.py re-reads the
  user before trusting it.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from config import settings
from errors import ExpiredToken, MalformedToken

# -----------------------------------------------------------------------------
# Password Hashing
# -----------------------------------------------------------------------------

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


def hash_password(raw_password: str) -> str:
    return pwd_context.hash(raw_password)


def verify_password(raw_password: str, hashed_password: Optional[str]) -> bool:
    if not raw_password or not hashed_password:
        return False
    return pwd_context.verify(raw_password, hashed_password)


# -----------------------------------------------------------------------------
# Reset Codes
# -----------------------------------------------------------------------------

def generate_reset_code(digits: int = None) -> str:
    """Short numeric code without a leading zero, e.g. 6 digits -> 100000..999999."""
    digits = digits or settings.RESET_CODE_DIGITS
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(9 * low))


def reset_code_expiry(now: datetime = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(minutes=settings.RESET_CODE_TTL_MINUTES)


# -----------------------------------------------------------------------------
# Session Tokens
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionClaims:
    user_id: str
    username: str
    email: str
    is_admin: bool
    issued_at: datetime
    expires_at: datetime


class SessionCodec:
    """Issues and verifies signed session tokens."""

    def __init__(self, secret: str, ttl: timedelta, algorithm: str = "HS256"):
        self.secret = secret
        self.ttl = ttl
        self.algorithm = algorithm

    def issue(self, user: dict, now: datetime = None) -> str:
        issued = now or datetime.now(timezone.utc)
        claims = {
            "sub": user["id"],
            "username": user["username"],
            "email": user["email"],
            "is_admin": bool(user.get("is_admin")),
            "iat": int(issued.timestamp()),
            "exp": int((issued + self.ttl).timestamp()),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as e:
            raise ExpiredToken() from e
        except JWTError as e:
            raise MalformedToken() from e

        try:
            return SessionClaims(
                user_id=str(payload["sub"]),
                username=payload.get("username", ""),
                email=payload.get("email", ""),
                is_admin=bool(payload.get("is_admin", False)),
                issued_at=datetime.fromtimestamp(payload["iat"], timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedToken() from e


session_codec = SessionCodec(
    settings.SECRET_KEY,
    timedelta(days=settings.SESSION_TTL_DAYS),
    settings.SESSION_ALGORITHM,
)
