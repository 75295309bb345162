from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from equiploan.models.loan import LoanStatus
from equiploan.schemas.common import reject_null
from equiploan.schemas.user import UserSummary


# ── Products ─────────────────────────────────────────────────

class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: str = Field(min_length=1, max_length=100)
    manufacturer: str | None = Field(None, max_length=255)
    model: str | None = Field(None, max_length=255)
    description: str | None = None


class ProductUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    category: str | None = Field(None, min_length=1, max_length=100)
    manufacturer: str | None = Field(None, max_length=255)
    model: str | None = Field(None, max_length=255)
    description: str | None = None

    @field_validator("name", "category", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)


class ProductOut(BaseModel):
    id: str
    name: str
    category: str
    manufacturer: str | None
    model: str | None
    description: str | None
    created_at: datetime
    updated_at: datetime
    total_instances: int = 0
    available_instances: int = 0
    loaned_instances: int = 0

    model_config = {"from_attributes": True}


class ProductRef(BaseModel):
    id: str
    name: str
    category: str
    manufacturer: str | None
    model: str | None

    model_config = {"from_attributes": True}


# ── Instances ────────────────────────────────────────────────

class InstanceCreate(BaseModel):
    product_id: str
    barcode: str = Field(min_length=1, max_length=100)
    serial_number: str | None = Field(None, max_length=100)
    condition: str = Field("good", max_length=30)
    is_available: bool = True
    location: str | None = Field(None, max_length=255)
    notes: str | None = None


class InstanceUpdate(BaseModel):
    product_id: str | None = None
    barcode: str | None = Field(None, min_length=1, max_length=100)
    serial_number: str | None = Field(None, max_length=100)
    condition: str | None = Field(None, max_length=30)
    is_available: bool | None = None
    location: str | None = Field(None, max_length=255)
    notes: str | None = None

    @field_validator("product_id", "barcode", "condition", "is_available", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)


class InstanceOut(BaseModel):
    id: str
    product_id: str
    barcode: str
    serial_number: str | None
    condition: str
    is_available: bool
    location: str | None
    notes: str | None
    created_at: datetime
    product: ProductRef | None = None

    model_config = {"from_attributes": True}


class CurrentLoanRef(BaseModel):
    id: str
    status: LoanStatus
    loan_date: datetime
    expected_return_date: datetime | None
    user: UserSummary

    model_config = {"from_attributes": True}


class InstanceDetail(InstanceOut):
    current_loan: CurrentLoanRef | None = None
