"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_user        → decode JWT, load user from DB, return User (401 otherwise)
  get_optional_user       → same, but None when no bearer token was sent
  require_permission(...) → the permission guard; restricts to granted permissions
"""

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.jwt import decode_token
from equiploan.auth.permissions import missing_permissions
from equiploan.database import get_db
from equiploan.messages import message
from equiploan.middleware.exceptions import ForbiddenError, UnauthorizedError
from equiploan.models.user import Permission, User, UserPermission

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


async def _user_from_token(token: str, db: AsyncSession) -> User:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise UnauthorizedError(message("invalid_token"))

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise UnauthorizedError(message("user_not_found"))
    return user


# ── Core user dependencies ──────────────────────────────────

async def get_current_user(
    token: str | None = Depends(optional_oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if not token:
        raise UnauthorizedError(message("invalid_token"))
    return await _user_from_token(token, db)


async def get_optional_user(
    token: str | None = Depends(optional_oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """A present but invalid token is still a 401; only absence yields None."""
    if not token:
        return None
    return await _user_from_token(token, db)


async def load_granted_permissions(db: AsyncSession, user_id: str) -> set[str]:
    """The caller's granted permission names, read fresh from the database."""
    result = await db.execute(
        select(Permission.name)
        .join(UserPermission, UserPermission.permission_id == Permission.id)
        .where(UserPermission.user_id == user_id)
    )
    return set(result.scalars().all())


# ── Permission guard ────────────────────────────────────────

def require_permission(*permissions: str):
    """Dependency factory: restrict to callers holding every listed permission.

    Usage:
        @router.post("")
        async def create_loan(user: User = Depends(require_permission("loan:create"))):
            ...

    With no permissions listed the route is open (the caller may be None).
    """
    async def _check(
        user: User | None = Depends(get_optional_user),
        db: AsyncSession = Depends(get_db),
    ) -> User | None:
        if not permissions:
            return user
        if user is None:
            raise ForbiddenError(message("unidentified_caller"), error_code="UNIDENTIFIED_CALLER")

        granted = await load_granted_permissions(db, user.id)
        missing = missing_permissions(granted, permissions)
        if missing:
            raise ForbiddenError(
                message("missing_permissions", names=", ".join(missing)),
                error_code="PERMISSION_DENIED",
            )
        return user

    return _check
