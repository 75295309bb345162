"""Authentication service: credentials, token lifecycle, password change.

Flow:
  register         → create client user, issue token pair
  login            → verify credentials, issue token pair, update last_login
  refresh          → verify refresh token against stored digest, rotate both
  logout           → forget the refresh token
  change_password  → verify current password, store new hash

Only a SHA-256 digest of the current refresh token is stored, so a
rotated or logged-out refresh token stops working immediately.  Access
tokens stay valid until they expire.
"""

import hmac
import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.jwt import (
    create_access_token,
    create_refresh_token,
    decode_token,
    digest_token,
)
from equiploan.auth.password import hash_password, verify_password
from equiploan.database import utcnow
from equiploan.messages import message
from equiploan.middleware.exceptions import ConflictError, UnauthorizedError, persistence_errors
from equiploan.models.audit_log import AuditAction, AuditEntity
from equiploan.models.user import User, UserRole
from equiploan.services import audit

logger = logging.getLogger(__name__)


@dataclass
class ClientInfo:
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


def _issue_tokens(user: User) -> TokenPair:
    """Create a new token pair and remember the refresh token's digest."""
    access = create_access_token(user.id, user.role.value)
    refresh = create_refresh_token(user.id, user.role.value)
    user.refresh_token_hash = digest_token(refresh)
    return TokenPair(access_token=access, refresh_token=refresh)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.lower()))
    return result.scalar_one_or_none()


async def register(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    phone: str | None = None,
    client: ClientInfo | None = None,
) -> tuple[User, TokenPair]:
    if await get_user_by_email(db, email):
        raise ConflictError(message("email_taken"))

    user = User(
        email=email.lower(),
        hashed_password=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role=UserRole.CLIENT,
        is_active=True,
    )
    db.add(user)
    async with persistence_errors("register user"):
        await db.flush()

    tokens = _issue_tokens(user)
    await db.flush()

    client = client or ClientInfo()
    audit.log_user_action(
        user.id,
        AuditAction.CREATE,
        AuditEntity.USER,
        f"User registered: {user.email}",
        entity_id=user.id,
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return user, tokens


async def login(
    db: AsyncSession,
    *,
    email: str,
    password: str,
    client: ClientInfo | None = None,
) -> tuple[User, TokenPair]:
    """Every failure gets the same 401; the real reason only goes to the audit log."""
    client = client or ClientInfo()
    user = await get_user_by_email(db, email)

    reason = None
    if not user:
        reason = "user_not_found"
    elif not user.is_active:
        reason = "user_inactive"
    elif not verify_password(password, user.hashed_password):
        reason = "invalid_password"

    if reason:
        logger.info("Failed login for %s: %s", email, reason)
        audit.log_security_event(
            AuditAction.FAILED_LOGIN,
            user.id if user else None,
            f"Failed login attempt for {email}",
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            metadata={"email": email, "reason": reason},
        )
        raise UnauthorizedError(message("invalid_credentials"))

    user.last_login = utcnow()
    tokens = _issue_tokens(user)
    await db.flush()

    audit.log_security_event(
        AuditAction.LOGIN,
        user.id,
        f"User logged in: {user.email}",
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )
    return user, tokens


async def refresh(db: AsyncSession, refresh_token: str) -> tuple[User, TokenPair]:
    payload = decode_token(refresh_token)
    user_id = payload.get("sub")
    if not user_id or payload.get("type") != "refresh":
        raise UnauthorizedError(message("invalid_refresh_token"))

    user = await db.get(User, user_id)
    if (
        not user
        or not user.is_active
        or not user.refresh_token_hash
        or not hmac.compare_digest(user.refresh_token_hash, digest_token(refresh_token))
    ):
        raise UnauthorizedError(message("invalid_refresh_token"))

    tokens = _issue_tokens(user)
    await db.flush()
    return user, tokens


async def logout(db: AsyncSession, user: User, client: ClientInfo | None = None) -> None:
    client = client or ClientInfo()
    user.refresh_token_hash = None
    await db.flush()
    audit.log_security_event(
        AuditAction.LOGOUT,
        user.id,
        f"User logged out: {user.email}",
        ip_address=client.ip_address,
        user_agent=client.user_agent,
    )


async def change_password(
    db: AsyncSession,
    user: User,
    *,
    current_password: str,
    new_password: str,
    client: ClientInfo | None = None,
) -> None:
    client = client or ClientInfo()
    if not verify_password(current_password, user.hashed_password):
        audit.log_security_event(
            AuditAction.PASSWORD_CHANGE,
            user.id,
            f"Failed password change for {user.email}: current password incorrect",
            ip_address=client.ip_address,
            user_agent=client.user_agent,
            metadata={"success": False},
        )
        raise UnauthorizedError(message("current_password_incorrect"))

    user.hashed_password = hash_password(new_password)
    # Outstanding refresh tokens die with the old password
    user.refresh_token_hash = None
    await db.flush()

    audit.log_security_event(
        AuditAction.PASSWORD_CHANGE,
        user.id,
        f"Password changed for {user.email}",
        ip_address=client.ip_address,
        user_agent=client.user_agent,
        metadata={"success": True},
    )
