from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from equiploan.models.user import UserRole
from equiploan.schemas.common import reject_null


class UserOut(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    full_name: str
    phone: str | None
    role: UserRole
    is_active: bool
    last_login: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """Compact user reference embedded in loans and activities."""
    id: str
    email: str
    full_name: str
    role: UserRole

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30)
    role: UserRole = UserRole.CLIENT
    is_active: bool = True


class UserUpdate(BaseModel):
    email: EmailStr | None = None
    password: str | None = Field(None, min_length=8, max_length=128)
    first_name: str | None = Field(None, min_length=1, max_length=100)
    last_name: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=30)
    role: UserRole | None = None
    is_active: bool | None = None

    @field_validator("email", "password", "first_name", "last_name", "role", "is_active", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)


# ── Permissions ──────────────────────────────────────────────

class PermissionNames(BaseModel):
    permissions: list[str] = Field(min_length=1)


class UserPermissionsOut(BaseModel):
    user_id: str
    permissions: list[str]


class PermissionOut(BaseModel):
    id: str
    name: str
    description: str | None

    model_config = {"from_attributes": True}
