"""Task model and its comment and attachment child rows."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Task(QueryModel, table=True):
    """Project-scoped work item with a human-readable display id."""

    __tablename__ = "tasks"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    display_id: str = Field(index=True, unique=True)
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    parent_task_id: UUID | None = Field(default=None, foreign_key="tasks.id", index=True)
    assignee_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    status: str = Field(default="todo", index=True)
    priority: str = Field(default="medium", index=True)
    due_date: datetime | None = Field(default=None, index=True)
    reminder_sent: bool = Field(default=False)
    story_points: int = Field(default=0)
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    column_id: str | None = None
    estimated_hours: float = Field(default=0.0)
    actual_hours: float = Field(default=0.0)
    completed_at: datetime | None = None
    created_by_user_id: UUID | None = Field(default=None, foreign_key="users.id", index=True)
    version: int = Field(default=1)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class TaskComment(QueryModel, table=True):
    """Comment left on a task by a project member."""

    __tablename__ = "task_comments"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    text: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(default_factory=utcnow)


class TaskAttachment(QueryModel, table=True):
    """Metadata for a file uploaded to a task; bytes live in file storage."""

    __tablename__ = "task_attachments"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    filename: str
    original_name: str
    url: str
    storage_key: str
    size: int
    mime_type: str
    uploaded_by_id: UUID = Field(foreign_key="users.id", index=True)
    uploaded_at: datetime = Field(default_factory=utcnow)
