"""AuditLog: immutable, append-only trail of system actions.

Rows are written by the audit dispatcher (never in the request's own
transaction) and are only ever removed by age-based retention cleanup.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from equiploan.database import Base, utcnow


class AuditAction(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    READ = "READ"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    FAILED_LOGIN = "FAILED_LOGIN"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PERMISSION_CHANGE = "PERMISSION_CHANGE"
    SYSTEM_EVENT = "SYSTEM_EVENT"
    ERROR = "ERROR"


class AuditEntity(str, enum.Enum):
    USER = "USER"
    PRODUCT = "PRODUCT"
    PRODUCT_INSTANCE = "PRODUCT_INSTANCE"
    LOAN = "LOAN"
    VOLUNTEER_ACTIVITY = "VOLUNTEER_ACTIVITY"
    AUTH = "AUTH"
    SYSTEM = "SYSTEM"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # ── What ───────────────────────────────────────────────────
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), index=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Who ────────────────────────────────────────────────────
    # No FK: entries outlive users and may precede the user's commit
    user_id: Mapped[str | None] = mapped_column(String(36), index=True)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))

    # ── Request context ────────────────────────────────────────
    endpoint: Mapped[str | None] = mapped_column(String(500))
    method: Mapped[str | None] = mapped_column(String(10))
    status_code: Mapped[int | None] = mapped_column(Integer, index=True)
    execution_time: Mapped[int | None] = mapped_column(Integer)  # ms
    error_message: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column("metadata", JSON)

    # ── Timestamp ──────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )
