"""In-app notification model."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

NOTIFICATION_TYPES = (
    "task_assigned",
    "task_comment",
    "task_status_changed",
    "project_invite",
    "task_due_soon",
    "task_file_uploaded",
)


class Notification(QueryModel, table=True):
    """Message addressed to one user, optionally referencing a task or project."""

    __tablename__ = "notifications"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    recipient_id: UUID = Field(foreign_key="users.id", index=True)
    sender_id: UUID | None = Field(default=None, foreign_key="users.id")
    type: str = Field(index=True)
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    read: bool = Field(default=False, index=True)
    read_at: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow, index=True)
