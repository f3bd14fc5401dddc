"""Schemas for workspaces, projects, memberships and the activity feed."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

from worknest.schemas.common import NonEmptyStr

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, NonEmptyStr)

ProjectStatus = Literal["active", "archived", "completed"]
AssignableRole = Literal["admin", "member", "viewer"]


class WorkspaceCreate(SQLModel):
    name: NonEmptyStr


class WorkspaceRead(SQLModel):
    id: UUID
    name: str
    owner_id: UUID
    created_at: datetime


class ProjectCreate(SQLModel):
    """Payload for creating a project; the creator becomes its owner."""

    title: NonEmptyStr
    description: str = ""
    workspace_id: UUID | None = None
    color: str = "#3B82F6"


class ProjectUpdate(SQLModel):
    title: NonEmptyStr | None = None
    description: str | None = None
    color: str | None = None
    status: ProjectStatus | None = None
    allow_comments: bool | None = None
    allow_file_uploads: bool | None = None
    email_notifications: bool | None = None


class ProjectMemberRead(SQLModel):
    id: UUID
    project_id: UUID
    user_id: UUID
    role: str
    joined_at: datetime


class ProjectRead(SQLModel):
    id: UUID
    workspace_id: UUID | None = None
    title: str
    description: str
    owner_id: UUID
    color: str
    status: str
    columns: list[dict[str, Any]] = Field(default_factory=list)
    allow_comments: bool
    allow_file_uploads: bool
    email_notifications: bool
    created_at: datetime
    updated_at: datetime
    members: list[ProjectMemberRead] = Field(default_factory=list)


class ProjectMemberCreate(SQLModel):
    user_id: UUID
    role: AssignableRole = "member"


class ProjectMemberUpdate(SQLModel):
    role: AssignableRole


class ActivityLogRead(SQLModel):
    id: UUID
    project_id: UUID
    user_id: UUID | None = None
    action: str
    description: str
    details: dict[str, Any] = Field(default_factory=dict, serialization_alias="metadata")
    created_at: datetime
