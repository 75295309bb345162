"""Password hashing (bcrypt).

bcrypt only looks at the first 72 bytes of its input, so longer secrets
are cut there explicitly instead of being rejected by the library.
"""

import bcrypt

from equiploan.config import settings

_BCRYPT_MAX_BYTES = 72


def _encode(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(_encode(password), salt).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_encode(password), hashed_password.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False
