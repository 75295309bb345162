"""Audit trail service: structured writers and read-side queries.

Writers never touch the caller's session: they hand the entry to the
audit dispatcher, which persists it in the background.

    log_user_action(user_id, AuditAction.CREATE, AuditEntity.LOAN, ...)
    log_system_event("Overdue sweep moved 4 loans")
    log_security_event(AuditAction.FAILED_LOGIN, None, "...", metadata=...)
    log_data_change(user_id, AuditEntity.USER, user.id, old, new)
    log_error("boom", "CREATE LOAN failed (500)", ...)
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.database import utcnow
from equiploan.messages import message
from equiploan.middleware.exceptions import NotFoundError
from equiploan.models.audit_log import AuditAction, AuditEntity, AuditLog
from equiploan.models.user import User
from equiploan.utils.audit_dispatch import audit_dispatcher
from equiploan.utils.query import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "created_at": AuditLog.created_at,
    "action": AuditLog.action,
    "entity_type": AuditLog.entity_type,
    "user_id": AuditLog.user_id,
}


def _value(kind) -> str:
    return kind.value if isinstance(kind, (AuditAction, AuditEntity)) else str(kind)


# ── Writers ─────────────────────────────────────────────────

def create_audit_log(
    *,
    action: AuditAction | str,
    entity_type: AuditEntity | str,
    description: str,
    entity_id: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict | None = None,
    endpoint: str | None = None,
    method: str | None = None,
    status_code: int | None = None,
    execution_time: int | None = None,
    error_message: str | None = None,
) -> None:
    audit_dispatcher.emit(
        action=_value(action),
        entity_type=_value(entity_type),
        entity_id=entity_id,
        description=description,
        user_id=user_id,
        ip_address=ip_address,
        user_agent=user_agent[:500] if user_agent else None,
        details=metadata,
        endpoint=endpoint,
        method=method,
        status_code=status_code,
        execution_time=execution_time,
        error_message=error_message,
    )


def log_user_action(
    user_id: str | None,
    action: AuditAction | str,
    entity_type: AuditEntity | str,
    description: str,
    entity_id: str | None = None,
    metadata: dict | None = None,
    **context,
) -> None:
    create_audit_log(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        description=description,
        metadata=metadata,
        **context,
    )


def log_system_event(description: str, metadata: dict | None = None) -> None:
    create_audit_log(
        action=AuditAction.SYSTEM_EVENT,
        entity_type=AuditEntity.SYSTEM,
        description=description,
        metadata=metadata,
    )


def log_security_event(
    action: AuditAction,
    user_id: str | None,
    description: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
    metadata: dict | None = None,
) -> None:
    create_audit_log(
        action=action,
        entity_type=AuditEntity.AUTH,
        entity_id=user_id,
        user_id=user_id,
        description=description,
        ip_address=ip_address,
        user_agent=user_agent,
        metadata=metadata,
    )


def log_data_change(
    user_id: str | None,
    entity_type: AuditEntity,
    entity_id: str,
    old_value: dict,
    new_value: dict,
    description: str | None = None,
) -> None:
    create_audit_log(
        action=AuditAction.UPDATE,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        description=description or f"{_value(entity_type)} {entity_id} updated",
        metadata={"old_value": old_value, "new_value": new_value},
    )


def log_error(
    error_message: str,
    description: str,
    user_id: str | None = None,
    entity_type: AuditEntity | str = AuditEntity.SYSTEM,
    entity_id: str | None = None,
    metadata: dict | None = None,
    **context,
) -> None:
    create_audit_log(
        action=AuditAction.ERROR,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        description=description,
        error_message=error_message,
        metadata=metadata,
        **context,
    )


# ── Readers ─────────────────────────────────────────────────

@dataclass
class AuditFilters:
    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    user_id: str | None = None
    ip_address: str | None = None
    status_code: int | None = None
    errors_only: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    sort_by: str = "created_at"
    sort_order: str = "desc"


async def list_audit_logs(
    db: AsyncSession, filters: AuditFilters, page: int, limit: int
) -> tuple[list[AuditLog], int]:
    stmt = select(AuditLog)

    if filters.action:
        stmt = stmt.where(AuditLog.action == filters.action)
    if filters.entity_type:
        stmt = stmt.where(AuditLog.entity_type == filters.entity_type)
    if filters.entity_id:
        stmt = stmt.where(AuditLog.entity_id == filters.entity_id)
    if filters.user_id:
        stmt = stmt.where(AuditLog.user_id == filters.user_id)
    if filters.ip_address:
        stmt = stmt.where(AuditLog.ip_address == filters.ip_address)
    if filters.status_code is not None:
        stmt = stmt.where(AuditLog.status_code == filters.status_code)
    if filters.errors_only:
        stmt = stmt.where(AuditLog.error_message.is_not(None))
    if filters.start_date:
        stmt = stmt.where(AuditLog.created_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(AuditLog.created_at <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search}%"
        matching_users = select(User.id).where(
            or_(
                User.email.ilike(pattern),
                User.first_name.ilike(pattern),
                User.last_name.ilike(pattern),
            )
        )
        stmt = stmt.where(
            or_(
                AuditLog.description.ilike(pattern),
                AuditLog.error_message.ilike(pattern),
                AuditLog.endpoint.ilike(pattern),
                AuditLog.user_id.in_(matching_users),
            )
        )

    stmt = apply_sort(stmt, SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def get_audit_log(db: AsyncSession, log_id: str) -> AuditLog:
    entry = await db.get(AuditLog, log_id)
    if not entry:
        raise NotFoundError(message("audit_log_not_found"))
    return entry


async def audit_statistics(
    db: AsyncSession,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> dict:
    conditions = []
    if start_date:
        conditions.append(AuditLog.created_at >= start_date)
    if end_date:
        conditions.append(AuditLog.created_at <= end_date)

    total = await db.scalar(select(func.count(AuditLog.id)).where(*conditions)) or 0
    error_count = await db.scalar(
        select(func.count(AuditLog.id)).where(
            AuditLog.error_message.is_not(None), *conditions
        )
    ) or 0

    action_rows = await db.execute(
        select(AuditLog.action, func.count(AuditLog.id))
        .where(*conditions)
        .group_by(AuditLog.action)
    )
    entity_rows = await db.execute(
        select(AuditLog.entity_type, func.count(AuditLog.id))
        .where(*conditions)
        .group_by(AuditLog.entity_type)
    )

    user_count = func.count(AuditLog.id).label("count")
    top_rows = await db.execute(
        select(AuditLog.user_id, user_count)
        .where(AuditLog.user_id.is_not(None), *conditions)
        .group_by(AuditLog.user_id)
        .order_by(user_count.desc())
        .limit(5)
    )
    top = top_rows.all()
    users = {}
    if top:
        result = await db.execute(select(User).where(User.id.in_([r[0] for r in top])))
        users = {u.id: u for u in result.scalars().all()}

    recent = await db.execute(
        select(AuditLog).where(*conditions).order_by(AuditLog.created_at.desc()).limit(10)
    )

    return {
        "total_logs": total,
        "error_count": error_count,
        "action_breakdown": {action: count for action, count in action_rows.all()},
        "entity_breakdown": {entity: count for entity, count in entity_rows.all()},
        "top_users": [
            {
                "user_id": user_id,
                "email": users[user_id].email if user_id in users else None,
                "name": users[user_id].full_name if user_id in users else None,
                "count": count,
            }
            for user_id, count in top
        ],
        "recent_activity": list(recent.scalars().all()),
    }


async def distinct_actions(db: AsyncSession) -> list[str]:
    result = await db.execute(select(AuditLog.action).distinct().order_by(AuditLog.action))
    return list(result.scalars().all())


async def distinct_entities(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(AuditLog.entity_type).distinct().order_by(AuditLog.entity_type)
    )
    return list(result.scalars().all())


async def cleanup_old_logs(db: AsyncSession, days_to_keep: int = 90) -> int:
    """Delete entries older than `days_to_keep` days. Returns rows removed."""
    cutoff = utcnow() - timedelta(days=days_to_keep)
    result = await db.execute(delete(AuditLog).where(AuditLog.created_at < cutoff))
    removed = result.rowcount or 0
    logger.info("Audit cleanup removed %d entries older than %s", removed, cutoff)
    return removed
