"""Audit trail routes (read only).

Endpoints:
    GET /api/audit               Paginated, filtered list   (audit:read)
    GET /api/audit/statistics    Aggregates                 (audit:read)
    GET /api/audit/actions       Distinct action values     (audit:read)
    GET /api/audit/entities      Distinct entity types      (audit:read)
    GET /api/audit/{log_id}      Single entry               (audit:read)

These paths are exempt from the audit middleware so reading the trail
does not grow it.
"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import require_permission
from equiploan.database import get_db
from equiploan.models.user import User
from equiploan.schemas.audit import AuditLogOut, AuditStatistics
from equiploan.schemas.common import PaginatedResponse, UtcDatetime, page_count
from equiploan.services import audit as audit_service
from equiploan.services.audit import AuditFilters

router = APIRouter()


@router.get("", response_model=PaginatedResponse[AuditLogOut])
async def list_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    user_id: str | None = None,
    ip_address: str | None = None,
    status_code: int | None = None,
    errors_only: bool = False,
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
):
    filters = AuditFilters(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=user_id,
        ip_address=ip_address,
        status_code=status_code,
        errors_only=errors_only,
        start_date=start_date,
        end_date=end_date,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    entries, total = await audit_service.list_audit_logs(db, filters, page, limit)
    return PaginatedResponse(
        items=[AuditLogOut.model_validate(e) for e in entries],
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.get("/statistics", response_model=AuditStatistics)
async def audit_statistics(
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
):
    return await audit_service.audit_statistics(db, start_date, end_date)


@router.get("/actions", response_model=list[str])
async def list_actions(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
):
    return await audit_service.distinct_actions(db)


@router.get("/entities", response_model=list[str])
async def list_entities(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
):
    return await audit_service.distinct_entities(db)


@router.get("/{log_id}", response_model=AuditLogOut)
async def get_audit_log(
    log_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("audit:read")),
):
    return await audit_service.get_audit_log(db, log_id)
