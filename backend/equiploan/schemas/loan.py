from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from equiploan.models.loan import LoanStatus
from equiploan.schemas.common import UtcDatetime, reject_null
from equiploan.schemas.product import InstanceOut
from equiploan.schemas.user import UserSummary


class LoanCreate(BaseModel):
    user_id: str
    product_instance_id: str
    expected_return_date: UtcDatetime | None = None
    notes: str | None = Field(None, max_length=2000)


class LoanUpdate(BaseModel):
    """Admin override; any status may be written."""
    expected_return_date: UtcDatetime | None = None
    notes: str | None = Field(None, max_length=5000)
    status: LoanStatus | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)


class LoanReturnById(BaseModel):
    notes: str | None = Field(None, max_length=1000)
    return_condition: str | None = Field(None, max_length=30)


class LoanReturn(BaseModel):
    loan_id: str
    return_condition: str | None = Field(None, max_length=30)
    return_notes: str | None = Field(None, max_length=1000)


class LoanMarkLost(BaseModel):
    notes: str | None = Field(None, max_length=1000)


class LoanOut(BaseModel):
    id: str
    user_id: str
    product_instance_id: str
    status: LoanStatus
    loan_date: datetime
    expected_return_date: datetime | None
    actual_return_date: datetime | None
    notes: str | None
    created_at: datetime
    updated_at: datetime
    is_overdue: bool = False
    days_overdue: int = 0
    user: UserSummary | None = None
    product_instance: InstanceOut | None = None

    model_config = {"from_attributes": True}


class LoanEventOut(BaseModel):
    id: str
    kind: str
    text: str | None
    recorded_by: str | None
    recorded_at: datetime

    model_config = {"from_attributes": True}


class CategoryCount(BaseModel):
    category: str
    count: int


class UserOverdueCount(BaseModel):
    user_id: str
    user_name: str
    count: int


class LoanStats(BaseModel):
    total_active: int
    total_overdue: int
    total_returned: int
    total_lost: int
    average_loan_duration: float
    loans_by_category: list[CategoryCount]
    overdue_by_user: list[UserOverdueCount]
