"""JWT token creation and decoding.

Token claims:
  - sub:   user ID
  - role:  user role string (informational)
  - type:  "access" | "refresh"
  - jti:   unique token id, so two tokens issued in the same second differ
  - exp:   expiry timestamp

Permissions are deliberately absent: the guard reloads them per request.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from equiploan.config import settings

ALGORITHM = settings.jwt_algorithm


def _encode(payload: dict) -> str:
    payload["jti"] = uuid.uuid4().hex
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def create_access_token(
    user_id: str,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    return _encode({"sub": user_id, "role": role, "type": "access", "exp": expire})


def create_refresh_token(
    user_id: str,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(days=settings.refresh_token_expire_days)
    )
    return _encode({"sub": user_id, "role": role, "type": "refresh", "exp": expire})


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}


def digest_token(token: str) -> str:
    """SHA-256 hex digest stored in place of a refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
