from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ResourceRequestEntryIn(BaseModel):
    user_id: int
    department_id: int
    message: str | None = None
    role: str | None = None


class ResourceRequestSubmitIn(BaseModel):
    requests: list[ResourceRequestEntryIn] = Field(min_length=1)


class ResourceRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    requested_user_id: int
    requester_id: int
    user_department_id: int
    status: str
    message: str | None
    review_notes: str | None
    reviewed_by: int | None
    reviewed_at: datetime | None
    created_at: datetime


class ReviewIn(BaseModel):
    action: str
    notes: str | None = None


class ReviewOut(BaseModel):
    request: ResourceRequestOut
    membership_created: bool
    sharing_created: bool
    department_membership_created: bool


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    message: str
    type: str
    entity_type: str | None
    entity_id: int | None
    is_read: bool
    created_at: datetime
    read_at: datetime | None


class NotificationListOut(BaseModel):
    unread: int
    notifications: list[NotificationOut]


class MarkAllReadOut(BaseModel):
    updated: int


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    claims: dict[str, object]


class SwitchDepartmentIn(BaseModel):
    department_id: int
