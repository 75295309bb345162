import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from equiploan.database import Base, utcnow

# Recognised instance conditions; the column stays free-form
INSTANCE_CONDITIONS = ("excellent", "good", "fair", "poor", "needs_repair")


class Product(Base):
    """Catalog entry: one kind of equipment (e.g. a folding wheelchair model)."""

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    manufacturer: Mapped[str | None] = mapped_column(String(255))
    model: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    instances = relationship(
        "ProductInstance", back_populates="product", cascade="all, delete-orphan"
    )


class ProductInstance(Base):
    """One physical, barcode-identified unit of a Product."""

    __tablename__ = "product_instances"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    product_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    barcode: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    serial_number: Mapped[str | None] = mapped_column(String(100))
    condition: Mapped[str] = mapped_column(String(30), default="good")

    # Stored "borrowable right now" flag, flipped by loan transitions
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    location: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    product = relationship("Product", back_populates="instances")
