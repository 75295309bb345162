"""Loan: binds one user to one product instance for a time window.

Status lifecycle:
    ACTIVE ──► OVERDUE ──► RETURNED
      │           │
      ├───────────┴──────► LOST
      └──────────────────► RETURNED

Loans are never deleted.  Every transition appends a dated line to the
free-text `notes` narrative and a structured LoanEvent row.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Enum as SAEnum, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from equiploan.database import Base, utcnow


class LoanStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"
    RETURNED = "RETURNED"
    LOST = "LOST"


# A loan in either state still holds its instance
ACTIVE_STATUSES = (LoanStatus.ACTIVE, LoanStatus.OVERDUE)


class Loan(Base):
    __tablename__ = "loans"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    product_instance_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_instances.id"), nullable=False, index=True
    )
    status: Mapped[LoanStatus] = mapped_column(
        SAEnum(LoanStatus), default=LoanStatus.ACTIVE, nullable=False, index=True
    )

    # ── Time window ──────────────────────────────────────────
    loan_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expected_return_date: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    # Set iff status == RETURNED
    actual_return_date: Mapped[datetime | None] = mapped_column(DateTime)

    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    # ── Relationships ────────────────────────────────────────
    user = relationship("User")
    product_instance = relationship("ProductInstance")
    events = relationship(
        "LoanEvent", back_populates="loan", order_by="LoanEvent.recorded_at"
    )


class LoanEvent(Base):
    """Append-only history entry for a loan."""

    __tablename__ = "loan_events"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    loan_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("loans.id"), nullable=False, index=True
    )
    # created | returned | lost | updated
    kind: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    text: Mapped[str | None] = mapped_column(Text)
    recorded_by: Mapped[str | None] = mapped_column(String(36))  # user_id
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )

    loan = relationship("Loan", back_populates="events")
