from datetime import datetime

from pydantic import BaseModel, Field


class AuditLogOut(BaseModel):
    id: str
    action: str
    entity_type: str
    entity_id: str | None
    user_id: str | None
    ip_address: str | None
    user_agent: str | None
    description: str
    details: dict | None = Field(None, serialization_alias="metadata")
    endpoint: str | None
    method: str | None
    status_code: int | None
    execution_time: int | None
    error_message: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class TopUser(BaseModel):
    user_id: str
    email: str | None
    name: str | None
    count: int


class AuditStatistics(BaseModel):
    total_logs: int
    error_count: int
    action_breakdown: dict[str, int]
    entity_breakdown: dict[str, int]
    top_users: list[TopUser]
    recent_activity: list[AuditLogOut]
