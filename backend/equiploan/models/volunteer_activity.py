import datetime as dt
import uuid

from sqlalchemy import Date, DateTime, Float, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from equiploan.database import Base, utcnow

# Offered to clients as suggestions; any other type is accepted too
DEFAULT_ACTIVITY_TYPES = (
    "Equipment distribution assistance",
    "Maintenance and repair",
    "Management and organization",
    "Training and instruction",
    "Community activity",
    "Technical support",
    "Office help",
    "Special activity",
    "Other",
)


class VolunteerActivity(Base):
    __tablename__ = "volunteer_activities"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    volunteer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=False, index=True
    )
    activity_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    volunteer = relationship("User")
