"""Loan routes.

Endpoints:
    POST   /api/loans                      Create a loan               (loan:create)
    GET    /api/loans                      Paginated, filtered list    (loan:read)
    GET    /api/loans/stats                Aggregate statistics        (loan:read)
    GET    /api/loans/overdue              Overdue loans               (loan:read)
    GET    /api/loans/active               Active + overdue loans      (loan:read)
    GET    /api/loans/my-loans             Caller's active loans       (authenticated)
    GET    /api/loans/user/{user_id}       A user's active loans       (loan:read)
    PATCH  /api/loans/return               Return by body              (loan:create)
    GET    /api/loans/{loan_id}            Single loan                 (loan:read)
    GET    /api/loans/{loan_id}/events     Loan history                (loan:read)
    PUT    /api/loans/{loan_id}            Admin update                (loan:create)
    PATCH  /api/loans/{loan_id}/return     Return by id                (loan:create)
    PATCH  /api/loans/{loan_id}/mark-lost  Mark lost                   (loan:create)

Every read runs the overdue sweep first.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.auth.deps import get_current_user, require_permission
from equiploan.database import get_db, utcnow
from equiploan.models.loan import Loan, LoanStatus
from equiploan.models.user import User
from equiploan.schemas.common import PaginatedResponse, UtcDatetime, page_count
from equiploan.schemas.loan import (
    LoanCreate,
    LoanEventOut,
    LoanMarkLost,
    LoanOut,
    LoanReturn,
    LoanReturnById,
    LoanStats,
    LoanUpdate,
)
from equiploan.services import loans as loan_service
from equiploan.services.loans import LoanFilters

router = APIRouter()


def _build_loan_out(loan: Loan, now: datetime | None = None) -> LoanOut:
    now = now or utcnow()
    return LoanOut.model_validate(loan).model_copy(update={
        "is_overdue": loan_service.is_overdue(loan, now),
        "days_overdue": loan_service.days_overdue(loan, now),
    })


def _build_loan_list(loans: list[Loan]) -> list[LoanOut]:
    now = utcnow()
    return [_build_loan_out(loan, now) for loan in loans]


# ── Collection ───────────────────────────────────────────────

@router.post("", response_model=LoanOut, status_code=status.HTTP_201_CREATED)
async def create_loan(
    body: LoanCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("loan:create")),
):
    loan = await loan_service.create_loan(
        db,
        user_id=body.user_id,
        product_instance_id=body.product_instance_id,
        expected_return_date=body.expected_return_date,
        notes=body.notes,
        actor=user,
    )
    return _build_loan_out(loan)


@router.get("", response_model=PaginatedResponse[LoanOut])
async def list_loans(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str | None = None,
    user_id: str | None = None,
    status: LoanStatus | None = None,
    product_category: str | None = None,
    start_date: UtcDatetime | None = None,
    end_date: UtcDatetime | None = None,
    is_overdue: bool | None = None,
    sort_by: str = "loan_date",
    sort_order: Literal["asc", "desc"] = "desc",
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    filters = LoanFilters(
        search=search,
        user_id=user_id,
        status=status,
        product_category=product_category,
        start_date=start_date,
        end_date=end_date,
        is_overdue=is_overdue,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    loans, total = await loan_service.list_loans(db, filters, page, limit)
    return PaginatedResponse(
        items=_build_loan_list(loans),
        total=total,
        page=page,
        limit=limit,
        total_pages=page_count(total, limit),
    )


@router.get("/stats", response_model=LoanStats)
async def loan_stats(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return await loan_service.loan_stats(db)


@router.get("/overdue", response_model=list[LoanOut])
async def overdue_loans(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return _build_loan_list(await loan_service.overdue_loans(db))


@router.get("/active", response_model=list[LoanOut])
async def active_loans(
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return _build_loan_list(await loan_service.active_loans(db))


@router.get("/my-loans", response_model=list[LoanOut])
async def my_loans(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return _build_loan_list(await loan_service.active_loans(db, user_id=user.id))


@router.get("/user/{user_id}", response_model=list[LoanOut])
async def user_active_loans(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return _build_loan_list(await loan_service.active_loans(db, user_id=user_id))


@router.patch("/return", response_model=LoanOut)
async def return_loan(
    body: LoanReturn,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("loan:create")),
):
    loan = await loan_service.return_loan(
        db,
        body.loan_id,
        notes=body.return_notes,
        return_condition=body.return_condition,
        actor=user,
    )
    return _build_loan_out(loan)


# ── Single loan ──────────────────────────────────────────────

@router.get("/{loan_id}", response_model=LoanOut)
async def get_loan(
    loan_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return _build_loan_out(await loan_service.get_loan(db, loan_id))


@router.get("/{loan_id}/events", response_model=list[LoanEventOut])
async def loan_events(
    loan_id: str,
    db: AsyncSession = Depends(get_db),
    _user: User = Depends(require_permission("loan:read")),
):
    return await loan_service.loan_events(db, loan_id)


@router.put("/{loan_id}", response_model=LoanOut)
async def update_loan(
    loan_id: str,
    body: LoanUpdate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("loan:create")),
):
    loan = await loan_service.update_loan(
        db, loan_id, body.model_dump(exclude_unset=True), actor=user
    )
    return _build_loan_out(loan)


@router.patch("/{loan_id}/return", response_model=LoanOut)
async def return_loan_by_id(
    loan_id: str,
    body: LoanReturnById | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("loan:create")),
):
    body = body or LoanReturnById()
    loan = await loan_service.return_loan(
        db,
        loan_id,
        notes=body.notes,
        return_condition=body.return_condition,
        actor=user,
    )
    return _build_loan_out(loan)


@router.patch("/{loan_id}/mark-lost", response_model=LoanOut)
async def mark_lost(
    loan_id: str,
    body: LoanMarkLost | None = None,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_permission("loan:create")),
):
    body = body or LoanMarkLost()
    loan = await loan_service.mark_lost(db, loan_id, notes=body.notes, actor=user)
    return _build_loan_out(loan)
