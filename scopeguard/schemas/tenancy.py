from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ProjectOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    organization_id: int
    name: str
    description: str | None
    created_by: int | None
    created_at: datetime


class DepartmentProjectsOut(BaseModel):
    department_id: int
    role: str
    from_cache: bool
    projects: list[ProjectOut]


class AssignmentIn(BaseModel):
    user_id: int
    role: str = "Member"


class AssignMembersIn(BaseModel):
    users: list[AssignmentIn] = Field(min_length=1)
    notify: bool = True


class AssignmentOut(BaseModel):
    user_id: int
    role: str
    status: str
    department_membership_created: bool = False


class RemoveMemberIn(BaseModel):
    user_id: int


class RoleChangeIn(BaseModel):
    role: str


class MembershipOut(BaseModel):
    user_id: int
    role: str
    changed: bool


class DocumentCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    content: str | None = None
    visibility: str = "project"
    is_public: bool = False


class DocumentUpdateIn(BaseModel):
    title: str | None = Field(default=None, max_length=200)
    content: str | None = None
    visibility: str | None = None
    is_public: bool | None = None


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    project_id: int
    author_id: int
    title: str
    content: str | None
    visibility: str
    is_public: bool
    created_at: datetime
    updated_at: datetime
