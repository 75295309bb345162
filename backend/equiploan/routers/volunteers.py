"""Volunteer activity routes.

Endpoints:
    POST   /api/volunteers/activities                  Log activity        (volunteer:create)
    GET    /api/volunteers/activities                  List activities     (volunteer:read)
    GET    /api/volunteers/activities/{activity_id}    Single activity     (volunteer:read)
    PUT    /api/volunteers/activities/{activity_id}    Update activity     (volunteer:update)
    DELETE /api/volunteers/activities/{activity_id}    Delete activity     (volunteer:delete)
    GET    /api/volunteers/activity-types              Known types         (volunteer:read)
    GET    /api/volunteers/reports                     Aggregate report    (volunteer:reports)
    GET    /api/volunteers/{volunteer_id}/stats        One volunteer       (volunteer:stats)

Callers with the volunteer role only see and edit their own entries.
"""

from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import require_permission
from equiploan.database import get_db
from equiploan.models.user import User
from equiploan.schemas.common import PaginatedResponse, page_count
from equiploan.schemas.volunteer import (
    ActivityCreate,
    ActivityOut,
    ActivityUpdate,
    VolunteerReport,
    VolunteerStats,
)
from equiploan.services import volunteers as volunteer_service
from equiploan.services.volunteers import ActivityFilters

router = APIRouter()


# ── Activities ───────────────────────────────────────────────

@router.post("/activities", response_model=ActivityOut, status_code=status.HTTP_201_CREATED)
async def create_activity(
    body: ActivityCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:create")),
):
    return await volunteer_service.create_activity(db, body.model_dump(), caller=user)


@router.get("/activities", response_model=PaginatedResponse[ActivityOut])
async def list_activities(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    volunteer_id: str | None = None,
    activity_type: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    sort_by: str = "date",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:read")),
):
    filters = ActivityFilters(
        volunteer_id=volunteer_id,
        activity_type=activity_type,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    activities, total = await volunteer_service.list_activities(db, filters, page, limit, caller=user)
    return PaginatedResponse(
        items=[ActivityOut.model_validate(a) for a in activities],
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.get("/activities/{activity_id}", response_model=ActivityOut)
async def get_activity(
    activity_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:read")),
):
    return await volunteer_service.get_activity(db, activity_id, caller=user)


@router.put("/activities/{activity_id}", response_model=ActivityOut)
async def update_activity(
    activity_id: str,
    body: ActivityUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:update")),
):
    return await volunteer_service.update_activity(
        db, activity_id, body.model_dump(exclude_unset=True), caller=user
    )


@router.delete("/activities/{activity_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_activity(
    activity_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:delete")),
):
    await volunteer_service.delete_activity(db, activity_id, caller=user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/activity-types", response_model=list[str])
async def list_activity_types(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("volunteer:read")),
):
    return await volunteer_service.activity_types(db)


# ── Reporting ────────────────────────────────────────────────

@router.get("/reports", response_model=VolunteerReport)
async def volunteer_report(
    report_type: str = "summary",
    start_date: date | None = None,
    end_date: date | None = None,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("volunteer:reports")),
):
    return await volunteer_service.generate_report(db, report_type, start_date, end_date)


@router.get("/{volunteer_id}/stats", response_model=VolunteerStats)
async def volunteer_stats(
    volunteer_id: str,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("volunteer:stats")),
):
    return await volunteer_service.volunteer_stats(db, volunteer_id, caller=user)
