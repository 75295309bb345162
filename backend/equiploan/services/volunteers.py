"""Volunteer activity logging, statistics and reports.

Rules:
  - hours must lie in [MIN_HOURS, MAX_HOURS]; checked here, once, for both
    create and update
  - the activity date may not be in the future
  - a caller whose role is volunteer only sees and records their own work
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from equiploan.database import utcnow
from equiploan.messages import message
from equiploan.middleware.exceptions import (
    BadRequestError,
    ForbiddenError,
    NotFoundError,
    persistence_errors,
)
from equiploan.models.audit_log import AuditEntity
from equiploan.models.user import User, UserRole
from equiploan.models.volunteer_activity import DEFAULT_ACTIVITY_TYPES, VolunteerActivity
from equiploan.services import audit
from equiploan.utils.query import apply_sort, paginate

logger = logging.getLogger(__name__)

MIN_HOURS = 0.1
MAX_HOURS = 24.0

REPORT_TYPES = ("summary", "detailed", "by_activity", "monthly")

SORT_COLUMNS = {
    "date": VolunteerActivity.date,
    "hours": VolunteerActivity.hours,
    "activity_type": VolunteerActivity.activity_type,
    "created_at": VolunteerActivity.created_at,
}


def validate_hours(hours: float) -> None:
    if not (MIN_HOURS <= hours <= MAX_HOURS):
        raise BadRequestError(message("hours_out_of_range", low=MIN_HOURS, high=int(MAX_HOURS)))


def validate_date(activity_date: date) -> None:
    if activity_date > utcnow().date():
        raise BadRequestError(message("future_activity_date"))


def _is_volunteer(user: User) -> bool:
    return user.role == UserRole.VOLUNTEER


def ensure_can_access(caller: User, volunteer_id: str) -> None:
    if _is_volunteer(caller) and caller.id != volunteer_id:
        raise ForbiddenError(message("volunteer_own_only"))


async def _get_volunteer(db: AsyncSession, volunteer_id: str) -> User:
    volunteer = await db.get(User, volunteer_id)
    if not volunteer or not volunteer.is_active or volunteer.role != UserRole.VOLUNTEER:
        raise NotFoundError(message("volunteer_not_found"))
    return volunteer


async def get_activity(db: AsyncSession, activity_id: str, caller: User | None = None) -> VolunteerActivity:
    result = await db.execute(
        select(VolunteerActivity)
        .where(VolunteerActivity.id == activity_id)
        .options(selectinload(VolunteerActivity.volunteer))
        .execution_options(populate_existing=True)
    )
    activity = result.scalar_one_or_none()
    if not activity:
        raise NotFoundError(message("activity_not_found"))
    if caller and _is_volunteer(caller) and activity.volunteer_id != caller.id:
        # Hide other volunteers' entries entirely
        raise NotFoundError(message("activity_not_found"))
    return activity


async def create_activity(db: AsyncSession, data: dict, caller: User) -> VolunteerActivity:
    volunteer_id = data.get("volunteer_id") or caller.id
    ensure_can_access(caller, volunteer_id)
    await _get_volunteer(db, volunteer_id)
    validate_hours(data["hours"])
    validate_date(data["date"])

    activity = VolunteerActivity(**{**data, "volunteer_id": volunteer_id})
    db.add(activity)
    async with persistence_errors("create volunteer activity"):
        await db.flush()
    logger.info("Logged %.1fh of '%s' for volunteer %s", activity.hours, activity.activity_type, volunteer_id)
    return await get_activity(db, activity.id)


async def update_activity(db: AsyncSession, activity_id: str, updates: dict, caller: User) -> VolunteerActivity:
    activity = await get_activity(db, activity_id, caller)
    if "volunteer_id" in updates:
        ensure_can_access(caller, updates["volunteer_id"])
        await _get_volunteer(db, updates["volunteer_id"])
    if "hours" in updates:
        validate_hours(updates["hours"])
    if "date" in updates:
        validate_date(updates["date"])

    old = {key: getattr(activity, key) for key in updates}
    for key, value in updates.items():
        setattr(activity, key, value)
    async with persistence_errors("update volunteer activity"):
        await db.flush()

    audit.log_data_change(
        caller.id,
        AuditEntity.VOLUNTEER_ACTIVITY,
        activity.id,
        {k: str(v) if isinstance(v, date) else v for k, v in old.items()},
        {k: str(v) if isinstance(v, date) else v for k, v in updates.items()},
    )
    return await get_activity(db, activity.id)


async def delete_activity(db: AsyncSession, activity_id: str, caller: User) -> None:
    activity = await get_activity(db, activity_id, caller)
    await db.delete(activity)
    async with persistence_errors("delete volunteer activity"):
        await db.flush()


@dataclass
class ActivityFilters:
    volunteer_id: str | None = None
    activity_type: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    search: str | None = None
    sort_by: str = "date"
    sort_order: str = "desc"


async def list_activities(
    db: AsyncSession, filters: ActivityFilters, page: int, limit: int, caller: User
) -> tuple[list[VolunteerActivity], int]:
    stmt = select(VolunteerActivity).options(selectinload(VolunteerActivity.volunteer))

    if _is_volunteer(caller):
        stmt = stmt.where(VolunteerActivity.volunteer_id == caller.id)
    elif filters.volunteer_id:
        stmt = stmt.where(VolunteerActivity.volunteer_id == filters.volunteer_id)

    if filters.activity_type:
        stmt = stmt.where(VolunteerActivity.activity_type == filters.activity_type)
    if filters.start_date:
        stmt = stmt.where(VolunteerActivity.date >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(VolunteerActivity.date <= filters.end_date)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(
            VolunteerActivity.description.ilike(pattern),
            VolunteerActivity.activity_type.ilike(pattern),
            VolunteerActivity.notes.ilike(pattern),
        ))

    stmt = apply_sort(stmt, SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def activity_types(db: AsyncSession) -> list[str]:
    result = await db.execute(
        select(VolunteerActivity.activity_type).distinct().order_by(VolunteerActivity.activity_type)
    )
    recorded = [t for t in result.scalars().all() if t not in DEFAULT_ACTIVITY_TYPES]
    return list(DEFAULT_ACTIVITY_TYPES) + recorded


# ── Aggregation ──────────────────────────────────────────────

def _by_type(activities: list[VolunteerActivity]) -> dict[str, dict]:
    groups: dict[str, dict] = defaultdict(lambda: {"count": 0, "hours": 0.0})
    for activity in activities:
        groups[activity.activity_type]["count"] += 1
        groups[activity.activity_type]["hours"] += activity.hours
    return {k: {"count": v["count"], "hours": round(v["hours"], 2)} for k, v in groups.items()}


def _by_month(activities: list[VolunteerActivity]) -> list[dict]:
    groups: dict[str, dict] = defaultdict(lambda: {"count": 0, "hours": 0.0})
    for activity in activities:
        key = activity.date.strftime("%Y-%m")
        groups[key]["count"] += 1
        groups[key]["hours"] += activity.hours
    return [
        {"month": month, "count": v["count"], "hours": round(v["hours"], 2)}
        for month, v in sorted(groups.items())
    ]


async def volunteer_stats(db: AsyncSession, volunteer_id: str, caller: User) -> dict:
    ensure_can_access(caller, volunteer_id)
    volunteer = await db.get(User, volunteer_id)
    if not volunteer or volunteer.role != UserRole.VOLUNTEER:
        raise NotFoundError(message("volunteer_not_found"))

    result = await db.execute(
        select(VolunteerActivity)
        .where(VolunteerActivity.volunteer_id == volunteer_id)
        .order_by(VolunteerActivity.date.desc(), VolunteerActivity.created_at.desc())
    )
    activities = list(result.scalars().all())
    total_hours = sum(a.hours for a in activities)

    return {
        "volunteer_id": volunteer.id,
        "volunteer_name": volunteer.full_name,
        "total_hours": round(total_hours, 2),
        "total_activities": len(activities),
        "average_hours": round(total_hours / len(activities), 2) if activities else 0.0,
        "activities_by_type": _by_type(activities),
        "monthly_breakdown": _by_month(activities),
        "recent_activities": activities[:5],
        "first_activity_date": activities[-1].date if activities else None,
        "last_activity_date": activities[0].date if activities else None,
    }


async def generate_report(
    db: AsyncSession,
    report_type: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict:
    if report_type not in REPORT_TYPES:
        raise BadRequestError(message("invalid_report_type", report_type=report_type))

    stmt = select(VolunteerActivity).options(selectinload(VolunteerActivity.volunteer))
    if start_date:
        stmt = stmt.where(VolunteerActivity.date >= start_date)
    if end_date:
        stmt = stmt.where(VolunteerActivity.date <= end_date)
    activities = list((await db.execute(stmt.order_by(VolunteerActivity.date))).scalars().all())

    total_hours = sum(a.hours for a in activities)
    summary = {
        "total_hours": round(total_hours, 2),
        "total_activities": len(activities),
        "active_volunteers": len({a.volunteer_id for a in activities}),
        "average_hours_per_activity": round(total_hours / len(activities), 2) if activities else 0.0,
    }

    rows: list[dict] = []
    if report_type == "detailed":
        per_volunteer: dict[str, dict] = {}
        for activity in activities:
            row = per_volunteer.setdefault(activity.volunteer_id, {
                "volunteer_id": activity.volunteer_id,
                "volunteer_name": activity.volunteer.full_name,
                "total_hours": 0.0,
                "total_activities": 0,
            })
            row["total_hours"] = round(row["total_hours"] + activity.hours, 2)
            row["total_activities"] += 1
        rows = sorted(per_volunteer.values(), key=lambda r: r["total_hours"], reverse=True)
    elif report_type == "by_activity":
        rows = [
            {"activity_type": activity_type, **values}
            for activity_type, values in sorted(_by_type(activities).items())
        ]
    elif report_type == "monthly":
        rows = _by_month(activities)

    return {
        "report_type": report_type,
        "start_date": start_date,
        "end_date": end_date,
        "generated_at": utcnow(),
        "summary": summary,
        "rows": rows,
    }
