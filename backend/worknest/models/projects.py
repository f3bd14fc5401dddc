"""Project (board) and project membership models."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

PROJECT_STATUSES = ("active", "archived", "completed")
PROJECT_ROLES = ("owner", "admin", "member", "viewer")


def default_columns() -> list[dict[str, Any]]:
    """Board columns a new project starts with, one per task status."""
    return [
        {"id": "todo", "title": "To Do", "task_ids": []},
        {"id": "inprogress", "title": "In Progress", "task_ids": []},
        {"id": "done", "title": "Done", "task_ids": []},
    ]


class Project(QueryModel, table=True):
    """Board that owns tasks and defines per-project collaboration toggles."""

    __tablename__ = "projects"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    workspace_id: UUID | None = Field(default=None, foreign_key="workspaces.id", index=True)
    title: str
    description: str = Field(default="")
    owner_id: UUID = Field(foreign_key="users.id", index=True)
    color: str = Field(default="#3B82F6")
    status: str = Field(default="active", index=True)
    columns: list[dict[str, Any]] = Field(
        default_factory=default_columns,
        sa_column=Column(JSON, nullable=False),
    )
    allow_comments: bool = Field(default=True)
    allow_file_uploads: bool = Field(default=True)
    email_notifications: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class ProjectMember(QueryModel, table=True):
    """Membership row granting a user a role on a project."""

    __tablename__ = "project_members"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    role: str = Field(default="member", index=True)
    joined_at: datetime = Field(default_factory=utcnow)
