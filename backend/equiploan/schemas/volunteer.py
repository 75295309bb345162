import datetime as dt

from pydantic import BaseModel, Field, field_validator

from equiploan.schemas.common import reject_null
from equiploan.schemas.user import UserSummary


class ActivityCreate(BaseModel):
    """`volunteer_id` defaults to the caller. Hours are range-checked by the service."""
    volunteer_id: str | None = None
    activity_type: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=500)
    hours: float
    date: dt.date
    notes: str | None = Field(None, max_length=1000)


class ActivityUpdate(BaseModel):
    volunteer_id: str | None = None
    activity_type: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, min_length=1, max_length=500)
    hours: float | None = None
    date: dt.date | None = None
    notes: str | None = Field(None, max_length=1000)

    @field_validator("volunteer_id", "activity_type", "description", "hours", "date", mode="before")
    @classmethod
    def _not_null(cls, value):
        return reject_null(value)


class ActivityOut(BaseModel):
    id: str
    volunteer_id: str
    activity_type: str
    description: str
    hours: float
    date: dt.date
    notes: str | None
    created_at: dt.datetime
    volunteer: UserSummary | None = None

    model_config = {"from_attributes": True}


class TypeBreakdown(BaseModel):
    count: int
    hours: float


class MonthBreakdown(BaseModel):
    month: str
    count: int
    hours: float


class RecentActivity(BaseModel):
    id: str
    activity_type: str
    description: str
    hours: float
    date: dt.date

    model_config = {"from_attributes": True}


class VolunteerStats(BaseModel):
    volunteer_id: str
    volunteer_name: str
    total_hours: float
    total_activities: int
    average_hours: float
    activities_by_type: dict[str, TypeBreakdown]
    monthly_breakdown: list[MonthBreakdown]
    recent_activities: list[RecentActivity]
    first_activity_date: dt.date | None
    last_activity_date: dt.date | None


class ReportSummary(BaseModel):
    total_hours: float
    total_activities: int
    active_volunteers: int
    average_hours_per_activity: float


class VolunteerReport(BaseModel):
    report_type: str
    start_date: dt.date | None
    end_date: dt.date | None
    generated_at: dt.datetime
    summary: ReportSummary
    rows: list[dict]
