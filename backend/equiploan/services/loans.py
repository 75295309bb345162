"""Loan lifecycle: creation rules, transitions, overdue sweep, statistics.

Transitions:
  create      → ACTIVE           (instance becomes unavailable)
  sweep       ACTIVE → OVERDUE   (expected_return_date passed; lazy, on reads)
  return      ACTIVE|OVERDUE → RETURNED   (instance available again)
  mark_lost   ACTIVE|OVERDUE → LOST       (instance stays unavailable)
  update      admin override of status / expected date / notes

Creation locks the borrower row and then the instance row before checking
availability and the active-loan ceiling, so two concurrent requests for
the same instance or the same borrower are serialized by the database.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from equiploan.config import settings
from equiploan.database import utcnow
from equiploan.messages import message
from equiploan.middleware.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    persistence_errors,
)
from equiploan.models.audit_log import AuditAction, AuditEntity
from equiploan.models.loan import ACTIVE_STATUSES, Loan, LoanEvent, LoanStatus
from equiploan.models.product import Product, ProductInstance
from equiploan.models.user import User
from equiploan.services import audit
from equiploan.utils.query import apply_sort, paginate

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "loan_date": Loan.loan_date,
    "expected_return_date": Loan.expected_return_date,
    "actual_return_date": Loan.actual_return_date,
    "status": Loan.status,
    "created_at": Loan.created_at,
}

_LOAN_OPTIONS = (
    selectinload(Loan.user),
    selectinload(Loan.product_instance).selectinload(ProductInstance.product),
)


def _append_note(loan: Loan, label: str, text: str | None, now: datetime) -> None:
    line = f"[{now:%Y-%m-%d %H:%M} UTC] {label}"
    if text:
        line += f": {text}"
    loan.notes = f"{loan.notes}\n{line}" if loan.notes else line


def _record_event(db: AsyncSession, loan: Loan, kind: str, text: str | None, actor: User | None, now: datetime) -> None:
    db.add(LoanEvent(
        loan_id=loan.id,
        kind=kind,
        text=text,
        recorded_by=actor.id if actor else None,
        recorded_at=now,
    ))


def is_overdue(loan: Loan, now: datetime | None = None) -> bool:
    if loan.status == LoanStatus.OVERDUE:
        return True
    now = now or utcnow()
    return (
        loan.status == LoanStatus.ACTIVE
        and loan.expected_return_date is not None
        and loan.expected_return_date < now
    )


def days_overdue(loan: Loan, now: datetime | None = None) -> int:
    now = now or utcnow()
    if not is_overdue(loan, now) or loan.expected_return_date is None:
        return 0
    return max(0, math.floor((now - loan.expected_return_date).total_seconds() / 86400))


async def count_active_loans(db: AsyncSession, *, user_id: str | None = None, instance_id: str | None = None) -> int:
    stmt = select(func.count(Loan.id)).where(Loan.status.in_(ACTIVE_STATUSES))
    if user_id:
        stmt = stmt.where(Loan.user_id == user_id)
    if instance_id:
        stmt = stmt.where(Loan.product_instance_id == instance_id)
    return await db.scalar(stmt) or 0


# ── Overdue sweep ────────────────────────────────────────────

async def sweep_overdue(db: AsyncSession) -> int:
    """Move every ACTIVE loan past its expected return date to OVERDUE.

    Loans without an expected return date are never touched.
    """
    now = utcnow()
    result = await db.execute(
        update(Loan)
        .where(
            Loan.status == LoanStatus.ACTIVE,
            Loan.expected_return_date.is_not(None),
            Loan.expected_return_date < now,
        )
        .values(status=LoanStatus.OVERDUE, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    swept = result.rowcount or 0
    if swept:
        logger.info("Overdue sweep moved %d loan(s) to OVERDUE", swept)
    return swept


# ── Reads ────────────────────────────────────────────────────

async def get_loan(db: AsyncSession, loan_id: str, *, sweep: bool = True) -> Loan:
    if sweep:
        await sweep_overdue(db)
    result = await db.execute(
        select(Loan)
        .where(Loan.id == loan_id)
        .options(*_LOAN_OPTIONS)
        .execution_options(populate_existing=True)
    )
    loan = result.scalar_one_or_none()
    if not loan:
        raise NotFoundError(message("loan_not_found"))
    return loan


@dataclass
class LoanFilters:
    search: str | None = None
    user_id: str | None = None
    status: LoanStatus | None = None
    product_category: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_overdue: bool | None = None
    sort_by: str = "loan_date"
    sort_order: str = "desc"


async def list_loans(db: AsyncSession, filters: LoanFilters, page: int, limit: int) -> tuple[list[Loan], int]:
    await sweep_overdue(db)

    stmt = (
        select(Loan)
        .join(User, Loan.user_id == User.id)
        .join(ProductInstance, Loan.product_instance_id == ProductInstance.id)
        .join(Product, ProductInstance.product_id == Product.id)
        .options(*_LOAN_OPTIONS)
    )

    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(or_(
            User.first_name.ilike(pattern),
            User.last_name.ilike(pattern),
            User.email.ilike(pattern),
            ProductInstance.barcode.ilike(pattern),
            ProductInstance.serial_number.ilike(pattern),
            Product.name.ilike(pattern),
            Loan.notes.ilike(pattern),
        ))
    if filters.user_id:
        stmt = stmt.where(Loan.user_id == filters.user_id)
    if filters.status:
        stmt = stmt.where(Loan.status == filters.status)
    if filters.product_category:
        stmt = stmt.where(Product.category.ilike(filters.product_category))
    if filters.start_date:
        stmt = stmt.where(Loan.loan_date >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(Loan.loan_date <= filters.end_date)
    if filters.is_overdue is True:
        stmt = stmt.where(Loan.status == LoanStatus.OVERDUE)
    elif filters.is_overdue is False:
        stmt = stmt.where(Loan.status != LoanStatus.OVERDUE)

    stmt = apply_sort(stmt, SORT_COLUMNS, filters.sort_by, filters.sort_order)
    return await paginate(db, stmt, page, limit)


async def overdue_loans(db: AsyncSession) -> list[Loan]:
    await sweep_overdue(db)
    result = await db.execute(
        select(Loan)
        .where(Loan.status == LoanStatus.OVERDUE)
        .options(*_LOAN_OPTIONS)
        .order_by(Loan.expected_return_date.asc())
    )
    return list(result.scalars().all())


async def active_loans(db: AsyncSession, user_id: str | None = None) -> list[Loan]:
    """ACTIVE and OVERDUE loans, newest first; optionally for one borrower."""
    await sweep_overdue(db)
    stmt = select(Loan).where(Loan.status.in_(ACTIVE_STATUSES)).options(*_LOAN_OPTIONS)
    if user_id:
        stmt = stmt.where(Loan.user_id == user_id)
    result = await db.execute(stmt.order_by(Loan.loan_date.desc()))
    return list(result.scalars().all())


async def loan_events(db: AsyncSession, loan_id: str) -> list[LoanEvent]:
    await get_loan(db, loan_id, sweep=False)
    result = await db.execute(
        select(LoanEvent)
        .where(LoanEvent.loan_id == loan_id)
        .order_by(LoanEvent.recorded_at.asc())
    )
    return list(result.scalars().all())


async def loan_stats(db: AsyncSession) -> dict:
    await sweep_overdue(db)

    status_rows = await db.execute(
        select(Loan.status, func.count(Loan.id)).group_by(Loan.status)
    )
    by_status = {status: count for status, count in status_rows.all()}

    returned = await db.execute(
        select(Loan.loan_date, Loan.actual_return_date).where(
            Loan.status == LoanStatus.RETURNED,
            Loan.actual_return_date.is_not(None),
        )
    )
    durations = [
        (returned_at - loaned_at).total_seconds() / 86400
        for loaned_at, returned_at in returned.all()
    ]
    average = round(sum(durations) / len(durations), 2) if durations else 0.0

    category_count = func.count(Loan.id).label("count")
    category_rows = await db.execute(
        select(Product.category, category_count)
        .join(ProductInstance, ProductInstance.product_id == Product.id)
        .join(Loan, Loan.product_instance_id == ProductInstance.id)
        .where(Loan.status.in_(ACTIVE_STATUSES))
        .group_by(Product.category)
        .order_by(category_count.desc())
    )

    user_count = func.count(Loan.id).label("count")
    overdue_rows = await db.execute(
        select(User.id, User.first_name, User.last_name, user_count)
        .join(Loan, Loan.user_id == User.id)
        .where(Loan.status == LoanStatus.OVERDUE)
        .group_by(User.id, User.first_name, User.last_name)
        .order_by(user_count.desc())
    )

    return {
        "total_active": by_status.get(LoanStatus.ACTIVE, 0),
        "total_overdue": by_status.get(LoanStatus.OVERDUE, 0),
        "total_returned": by_status.get(LoanStatus.RETURNED, 0),
        "total_lost": by_status.get(LoanStatus.LOST, 0),
        "average_loan_duration": average,
        "loans_by_category": [
            {"category": category, "count": count}
            for category, count in category_rows.all()
        ],
        "overdue_by_user": [
            {"user_id": user_id, "user_name": f"{first} {last}".strip(), "count": count}
            for user_id, first, last, count in overdue_rows.all()
        ],
    }


# ── Writes ───────────────────────────────────────────────────

def lock_user(user_id: str) -> Select:
    return select(User).where(User.id == user_id).with_for_update()


def lock_instance(instance_id: str) -> Select:
    return select(ProductInstance).where(ProductInstance.id == instance_id).with_for_update()


async def create_loan(
    db: AsyncSession,
    *,
    user_id: str,
    product_instance_id: str,
    expected_return_date: datetime | None = None,
    notes: str | None = None,
    actor: User | None = None,
) -> Loan:
    # Lock order: borrower, then instance
    user = (await db.execute(lock_user(user_id))).scalar_one_or_none()
    if not user or not user.is_active:
        raise NotFoundError(message("user_not_found"))

    instance = (await db.execute(lock_instance(product_instance_id))).scalar_one_or_none()
    if not instance:
        raise NotFoundError(message("instance_not_found"))

    if await count_active_loans(db, instance_id=instance.id):
        raise ConflictError(message("instance_on_loan"))
    if not instance.is_available:
        raise ConflictError(message("instance_not_available"))

    ceiling = settings.max_active_loans
    if await count_active_loans(db, user_id=user.id) >= ceiling:
        raise ConflictError(message("loan_limit_reached", limit=ceiling))

    now = utcnow()
    loan = Loan(
        user_id=user.id,
        product_instance_id=instance.id,
        status=LoanStatus.ACTIVE,
        loan_date=now,
        expected_return_date=expected_return_date,
        notes=notes,
    )
    db.add(loan)
    instance.is_available = False

    async with persistence_errors("create loan"):
        await db.flush()
        _record_event(db, loan, "created", notes, actor, now)
        await db.flush()

    audit.log_user_action(
        actor.id if actor else None,
        AuditAction.CREATE,
        AuditEntity.LOAN,
        f"Loan created for instance {instance.barcode} to {user.email}",
        entity_id=loan.id,
        metadata={"user_id": user.id, "product_instance_id": instance.id},
    )
    return await get_loan(db, loan.id, sweep=False)


async def _load_for_transition(db: AsyncSession, loan_id: str) -> Loan:
    await sweep_overdue(db)
    loan = (
        await db.execute(
            select(Loan)
            .where(Loan.id == loan_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if not loan:
        raise NotFoundError(message("loan_not_found"))
    if loan.status not in ACTIVE_STATUSES:
        raise BadRequestError(message("loan_not_active"))
    return loan


async def return_loan(
    db: AsyncSession,
    loan_id: str,
    *,
    notes: str | None = None,
    return_condition: str | None = None,
    actor: User | None = None,
) -> Loan:
    loan = await _load_for_transition(db, loan_id)
    now = utcnow()

    loan.status = LoanStatus.RETURNED
    loan.actual_return_date = now
    _append_note(loan, "Returned", notes, now)

    instance = await db.get(ProductInstance, loan.product_instance_id)
    instance.is_available = True
    if return_condition:
        instance.condition = return_condition

    async with persistence_errors("return loan"):
        _record_event(db, loan, "returned", notes, actor, now)
        await db.flush()

    audit.log_user_action(
        actor.id if actor else None,
        AuditAction.UPDATE,
        AuditEntity.LOAN,
        f"Loan {loan.id} returned",
        entity_id=loan.id,
        metadata={"return_condition": return_condition, "notes": notes},
    )
    return await get_loan(db, loan.id, sweep=False)


async def mark_lost(
    db: AsyncSession,
    loan_id: str,
    *,
    notes: str | None = None,
    actor: User | None = None,
) -> Loan:
    loan = await _load_for_transition(db, loan_id)
    now = utcnow()

    loan.status = LoanStatus.LOST
    _append_note(loan, "Lost", notes, now)

    instance = await db.get(ProductInstance, loan.product_instance_id)
    instance.is_available = False

    async with persistence_errors("mark loan lost"):
        _record_event(db, loan, "lost", notes, actor, now)
        await db.flush()

    audit.log_user_action(
        actor.id if actor else None,
        AuditAction.UPDATE,
        AuditEntity.LOAN,
        f"Loan {loan.id} marked lost",
        entity_id=loan.id,
        metadata={"notes": notes},
    )
    return await get_loan(db, loan.id, sweep=False)


async def update_loan(
    db: AsyncSession,
    loan_id: str,
    updates: dict,
    actor: User | None = None,
) -> Loan:
    """Admin override: any status may be written directly.

    Keeps `actual_return_date` consistent: stamped when entering RETURNED,
    cleared when leaving it.
    """
    loan = await get_loan(db, loan_id)
    old = {
        "status": loan.status.value,
        "expected_return_date": loan.expected_return_date.isoformat() if loan.expected_return_date else None,
        "notes": loan.notes,
    }
    now = utcnow()

    new_status = updates.pop("status", None)
    if new_status is not None and new_status != loan.status:
        if new_status == LoanStatus.RETURNED:
            loan.actual_return_date = now
        elif loan.status == LoanStatus.RETURNED:
            loan.actual_return_date = None
        loan.status = new_status

    for key, value in updates.items():
        setattr(loan, key, value)

    new = {
        "status": loan.status.value,
        "expected_return_date": loan.expected_return_date.isoformat() if loan.expected_return_date else None,
        "notes": loan.notes,
    }
    changed = {key: {"old": old[key], "new": new[key]} for key in old if old[key] != new[key]}

    async with persistence_errors("update loan"):
        if changed:
            _record_event(db, loan, "updated", ", ".join(sorted(changed)), actor, now)
        await db.flush()

    if changed:
        audit.log_data_change(
            actor.id if actor else None,
            AuditEntity.LOAN,
            loan.id,
            old_value={key: old[key] for key in changed},
            new_value={key: new[key] for key in changed},
        )
    return await get_loan(db, loan.id, sweep=False)
