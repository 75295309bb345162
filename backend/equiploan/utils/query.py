"""Shared list-query helpers: allow-listed sorting and page slicing."""

from __future__ import annotations

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from equiploan.messages import message
from equiploan.middleware.exceptions import BadRequestError


def apply_sort(stmt: Select, columns: dict, sort_by: str, sort_order: str = "desc") -> Select:
    """Order `stmt` by `columns[sort_by]`; unknown keys are a 400."""
    column = columns.get(sort_by)
    if column is None:
        raise BadRequestError(message("invalid_sort", field=sort_by))
    return stmt.order_by(column.asc() if sort_order == "asc" else column.desc())


async def paginate(db: AsyncSession, stmt: Select, page: int, limit: int) -> tuple[list, int]:
    """Run `stmt` for one 1-based page; returns (rows, total matching rows)."""
    total = await db.scalar(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ) or 0
    result = await db.execute(stmt.limit(limit).offset((page - 1) * limit))
    return list(result.scalars().unique().all()), total
