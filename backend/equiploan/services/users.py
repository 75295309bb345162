"""User administration and permission grants."""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import load_granted_permissions
from equiploan.auth.password import hash_password
from equiploan.auth.permissions import unknown_permissions
from equiploan.messages import message
from equiploan.middleware.exceptions import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    persistence_errors,
)
from equiploan.models.audit_log import AuditAction, AuditEntity
from equiploan.models.loan import Loan
from equiploan.models.user import Permission, User, UserPermission, UserRole
from equiploan.models.volunteer_activity import VolunteerActivity
from equiploan.services import audit
from equiploan.services.auth import get_user_by_email
from equiploan.utils.query import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created_at": User.created_at,
    "email": User.email,
    "first_name": User.first_name,
    "last_name": User.last_name,
    "last_login": User.last_login,
}

# Columns safe to copy into an audit diff
_AUDITED_FIELDS = ("email", "first_name", "last_name", "phone", "role", "is_active")


def _snapshot(user: User, fields) -> dict:
    snap = {}
    for field in fields:
        if field not in _AUDITED_FIELDS:
            continue
        value = getattr(user, field)
        snap[field] = value.value if isinstance(value, UserRole) else value
    return snap


async def get_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFoundError(message("user_not_found"))
    return user


@dataclass
class UserFilters:
    search: str | None = None
    role: UserRole | None = None
    is_active: bool | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


async def list_users(db: AsyncSession, filters: UserFilters, page: int, limit: int) -> tuple[list[User], int]:
    stmt = select(User)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(
            User.email.ilike(pattern),
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
        ))
    if filters.role:
        stmt = stmt.where(User.role == filters.role)
    if filters.is_active is not None:
        stmt = stmt.where(User.is_active == filters.is_active)
    stmt = apply_sort(stmt, SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def create_user(db: AsyncSession, data: dict, actor: User | None = None) -> User:
    if await get_user_by_email(db, data["email"]):
        raise ConflictError(message("email_taken"))

    password = data.pop("password")
    user = User(**data, hashed_password=hash_password(password))
    user.email = user.email.lower()
    db.add(user)
    async with persistence_errors("create user"):
        await db.flush()
    logger.info("User created: %s (%s) by %s", user.email, user.role.value, actor.id if actor else "system")
    return user


async def update_user(db: AsyncSession, user_id: str, updates: dict, actor: User | None = None) -> User:
    user = await get_user(db, user_id)

    if updates.get("email") is not None:
        updates["email"] = updates["email"].lower()
        existing = await get_user_by_email(db, updates["email"])
        if existing and existing.id != user.id:
            raise ConflictError(message("email_taken"))

    password = updates.pop("password", None)
    old = _snapshot(user, updates)
    for key, value in updates.items():
        setattr(user, key, value)
    if password:
        user.hashed_password = hash_password(password)
        user.refresh_token_hash = None

    async with persistence_errors("update user"):
        await db.flush()

    new = _snapshot(user, updates)
    if password:
        old["password"] = new["password"] = "[REDACTED]"
    audit.log_data_change(actor.id if actor else None, AuditEntity.USER, user.id, old, new)
    return user


async def delete_user(db: AsyncSession, user_id: str, actor: User) -> None:
    if user_id == actor.id:
        raise ForbiddenError(message("self_delete"))
    user = await get_user(db, user_id)

    has_loans = await db.scalar(select(func.count(Loan.id)).where(Loan.user_id == user.id))
    has_activities = await db.scalar(
        select(func.count(VolunteerActivity.id)).where(VolunteerActivity.volunteer_id == user.id)
    )
    if has_loans or has_activities:
        raise ConflictError(message("user_has_history"))

    await db.delete(user)
    async with persistence_errors("delete user"):
        await db.flush()


async def set_active(db: AsyncSession, user_id: str, active: bool, actor: User) -> User:
    if not active and user_id == actor.id:
        raise ForbiddenError(message("self_deactivate"))
    user = await get_user(db, user_id)
    if user.is_active != active:
        old = {"is_active": user.is_active}
        user.is_active = active
        if not active:
            user.refresh_token_hash = None
        await db.flush()
        audit.log_data_change(actor.id, AuditEntity.USER, user.id, old, {"is_active": active})
    return user


# ── Permissions ──────────────────────────────────────────────

async def user_permissions(db: AsyncSession, user_id: str) -> list[str]:
    await get_user(db, user_id)
    return sorted(await load_granted_permissions(db, user_id))


async def _permissions_by_name(db: AsyncSession, names: list[str]) -> list[Permission]:
    unknown = unknown_permissions(names)
    if unknown:
        raise BadRequestError(message("unknown_permissions", names=", ".join(unknown)))

    result = await db.execute(select(Permission).where(Permission.name.in_(names)))
    permissions = list(result.scalars().all())
    missing = sorted(set(names) - {p.name for p in permissions})
    if missing:
        # In the catalog but never seeded into this database
        raise BadRequestError(message("unknown_permissions", names=", ".join(missing)))
    return permissions


async def assign_permissions(db: AsyncSession, user_id: str, names: list[str], actor: User) -> list[str]:
    """Grant `names` to the user; pairs that already exist are skipped."""
    user = await get_user(db, user_id)
    permissions = await _permissions_by_name(db, names)

    existing = await db.execute(
        select(UserPermission.permission_id).where(UserPermission.user_id == user.id)
    )
    held = set(existing.scalars().all())

    granted = []
    for permission in permissions:
        if permission.id in held:
            continue
        db.add(UserPermission(user_id=user.id, permission_id=permission.id, granted_by=actor.id))
        granted.append(permission.name)

    async with persistence_errors("assign permissions"):
        await db.flush()

    if granted:
        audit.log_user_action(
            actor.id,
            AuditAction.PERMISSION_CHANGE,
            AuditEntity.USER,
            f"Granted {', '.join(sorted(granted))} to {user.email}",
            entity_id=user.id,
            metadata={"granted": sorted(granted)},
        )
    return sorted(await load_granted_permissions(db, user.id))


async def revoke_permissions(db: AsyncSession, user_id: str, names: list[str], actor: User) -> list[str]:
    user = await get_user(db, user_id)
    permissions = await _permissions_by_name(db, names)

    result = await db.execute(
        delete(UserPermission).where(
            UserPermission.user_id == user.id,
            UserPermission.permission_id.in_([p.id for p in permissions]),
        )
    )
    if result.rowcount:
        audit.log_user_action(
            actor.id,
            AuditAction.PERMISSION_CHANGE,
            AuditEntity.USER,
            f"Revoked {', '.join(sorted(names))} from {user.email}",
            entity_id=user.id,
            metadata={"revoked": sorted(names)},
        )
    return sorted(await load_granted_permissions(db, user.id))


async def list_permission_catalog(db: AsyncSession) -> list[Permission]:
    result = await db.execute(select(Permission).order_by(Permission.name))
    return list(result.scalars().all())
