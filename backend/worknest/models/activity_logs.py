"""Project activity feed entries."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

ACTIVITY_ACTIONS = (
    "task_created",
    "task_updated",
    "task_deleted",
    "task_moved",
    "comment_added",
    "member_added",
    "member_removed",
    "member_role_changed",
    "project_created",
    "project_updated",
    "file_uploaded",
    "file_deleted",
)


class ActivityLog(QueryModel, table=True):
    """Human-readable record of something a user did on a project."""

    __tablename__ = "activity_logs"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    user_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    action: str = Field(index=True)
    description: str
    # `metadata` is reserved on declarative models.
    details: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSON, nullable=False),
    )
    created_at: datetime = Field(default_factory=utcnow, index=True)
