"""Management CLI.

Usage:
    python -m equiploan.cli seed-permissions            # Write the permission catalog
    python -m equiploan.cli create-admin EMAIL PASSWORD # Admin user holding system:admin
    python -m equiploan.cli cleanup-audit [DAYS]        # Drop audit entries older than DAYS
    python -m equiploan.cli sweep-overdue               # Flag ACTIVE loans past due as OVERDUE
"""

import asyncio
import logging
import sys

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.password import hash_password
from equiploan.auth.permissions import BYPASS_PERMISSION, PERMISSION_CATALOG
from equiploan.config import settings
from equiploan.database import async_session
from equiploan.models.user import Permission, User, UserPermission, UserRole
from equiploan.services import audit
from equiploan.services.auth import get_user_by_email
from equiploan.services.loans import sweep_overdue
from equiploan.utils.audit_dispatch import audit_dispatcher

logger = logging.getLogger("equiploan.cli")


async def seed_permissions(db: AsyncSession) -> int:
    """Insert catalog entries missing from the table. Returns how many were added."""
    result = await db.execute(select(Permission.name))
    existing = set(result.scalars().all())
    added = 0
    for name, description in PERMISSION_CATALOG.items():
        if name not in existing:
            db.add(Permission(name=name, description=description))
            added += 1
    await db.flush()
    return added


async def create_admin(db: AsyncSession, email: str, password: str) -> User:
    """Create (or promote) an admin and grant it the bypass permission."""
    await seed_permissions(db)

    user = await get_user_by_email(db, email)
    if user is None:
        user = User(
            email=email.lower(),
            hashed_password=hash_password(password),
            first_name="System",
            last_name="Administrator",
            role=UserRole.ADMIN,
            is_active=True,
        )
        db.add(user)
        await db.flush()
    else:
        user.role = UserRole.ADMIN
        user.is_active = True

    bypass = await db.scalar(select(Permission).where(Permission.name == BYPASS_PERMISSION))
    held = await db.scalar(
        select(UserPermission.id).where(
            UserPermission.user_id == user.id,
            UserPermission.permission_id == bypass.id,
        )
    )
    if held is None:
        db.add(UserPermission(user_id=user.id, permission_id=bypass.id))
    await db.flush()
    return user


async def _run(cmd: str, args: list[str]) -> int:
    async with async_session() as db:
        if cmd == "seed-permissions":
            added = await seed_permissions(db)
            print(f"  {added} permission(s) added, {len(PERMISSION_CATALOG)} in catalog")
        elif cmd == "create-admin":
            if len(args) != 2:
                print("Usage: python -m equiploan.cli create-admin EMAIL PASSWORD")
                return 1
            user = await create_admin(db, args[0], args[1])
            print(f"  Admin ready: {user.email} ({user.id})")
        elif cmd == "cleanup-audit":
            try:
                days = int(args[0]) if args else settings.audit_retention_days
            except ValueError:
                print("Usage: python -m equiploan.cli cleanup-audit [DAYS]")
                return 1
            removed = await audit.cleanup_old_logs(db, days)
            audit.log_system_event(
                f"Audit cleanup removed {removed} entries older than {days} days",
                metadata={"days_to_keep": days, "removed": removed},
            )
            print(f"  Removed {removed} audit entries older than {days} days")
        elif cmd == "sweep-overdue":
            swept = await sweep_overdue(db)
            print(f"  {swept} loan(s) marked OVERDUE")
        else:
            print(__doc__)
            return 1
        await db.commit()

    await audit_dispatcher.drain()
    return 0


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    logging.basicConfig(level=settings.log_level.upper())
    cmd = argv[0] if argv else ""
    return asyncio.run(_run(cmd, argv[1:]))


if __name__ == "__main__":
    sys.exit(main())
