"""Common schemas used across the application."""

import math
from datetime import datetime, timezone
from typing import Annotated, Generic, TypeVar

from pydantic import AfterValidator, BaseModel

T = TypeVar("T")


class PaginatedResponse(BaseModel, Generic[T]):
    """Page-numbered response wrapper (pages are 1-based).

    Usage:
        response_model=PaginatedResponse[LoanOut]

    Returns:
        {
            "items": [...],
            "total": 150,
            "page": 2,
            "limit": 20,
            "total_pages": 8
        }
    """
    items: list[T]
    total: int
    page: int
    limit: int
    total_pages: int


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


class MessageResponse(BaseModel):
    message: str


def naive_utc(value: datetime | None) -> datetime | None:
    """Normalize an incoming timestamp to the naive-UTC form the DB stores."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


UtcDatetime = Annotated[datetime, AfterValidator(naive_utc)]


def reject_null(value):
    """Partial-update fields may be omitted, but not sent as null."""
    if value is None:
        raise ValueError("may be omitted but not null")
    return value
