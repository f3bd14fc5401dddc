"""Schemas for task payloads, task reads and the paginated task list."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Self
from uuid import UUID

from pydantic import Field, model_validator
from sqlmodel import SQLModel
from sqlmodel._compat import SQLModelConfig

from worknest.schemas.common import NonEmptyStr

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, NonEmptyStr)

TaskStatus = Literal["todo", "inprogress", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
DependencyType = Literal["blocking", "blocked_by", "related"]


class TaskCreate(SQLModel):
    """Payload for creating a task on a project."""

    project_id: UUID
    title: NonEmptyStr
    description: str = ""
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"
    assignee_id: UUID | None = None
    parent_task_id: UUID | None = None
    due_date: datetime | None = None
    story_points: int = Field(default=0, ge=0, le=21)
    tags: list[str] = Field(default_factory=list)
    column_id: str | None = None
    estimated_hours: float = Field(default=0, ge=0)


class TaskUpdate(SQLModel):
    """Fields a client may change on an existing task.

    Anything else (project, display id, creator, timestamps) is rejected.
    `expected_version` opts into optimistic concurrency: the update only
    applies when it matches the stored version.
    """

    model_config = SQLModelConfig(extra="forbid")

    title: NonEmptyStr | None = None
    description: str | None = None
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    assignee_id: UUID | None = None
    due_date: datetime | None = None
    story_points: int | None = Field(default=None, ge=0, le=21)
    tags: list[str] | None = None
    column_id: str | None = None
    estimated_hours: float | None = Field(default=None, ge=0)
    actual_hours: float | None = Field(default=None, ge=0)
    expected_version: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _reject_null_required_fields(self) -> Self:
        for name in ("title", "status", "priority", "story_points", "tags"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, object]:
        """Fields the client actually sent, minus the concurrency token."""
        updates = self.model_dump(exclude_unset=True)
        updates.pop("expected_version", None)
        return updates


class CommentCreate(SQLModel):
    text: NonEmptyStr


class DependencyCreate(SQLModel):
    depends_on_task_id: UUID
    dependency_type: DependencyType = "blocking"


class TaskCommentRead(SQLModel):
    id: UUID
    task_id: UUID
    user_id: UUID
    text: str
    created_at: datetime


class TaskAttachmentRead(SQLModel):
    id: UUID
    task_id: UUID
    filename: str
    original_name: str
    url: str
    size: int
    mime_type: str
    uploaded_by_id: UUID
    uploaded_at: datetime


class TaskDependencyRead(SQLModel):
    """Dependency edge with a summary of the task it points at."""

    id: UUID
    depends_on_task_id: UUID
    dependency_type: str
    display_id: str
    title: str
    status: str
    created_at: datetime


class TaskRead(SQLModel):
    """Task with its comments, attachments and dependency edges."""

    id: UUID
    display_id: str
    title: str
    description: str
    project_id: UUID
    parent_task_id: UUID | None = None
    assignee_id: UUID | None = None
    status: str
    priority: str
    due_date: datetime | None = None
    reminder_sent: bool
    story_points: int
    tags: list[str] = Field(default_factory=list)
    column_id: str | None = None
    estimated_hours: float
    actual_hours: float
    completed_at: datetime | None = None
    created_by_user_id: UUID | None = None
    version: int
    created_at: datetime
    updated_at: datetime
    comments: list[TaskCommentRead] = Field(default_factory=list)
    attachments: list[TaskAttachmentRead] = Field(default_factory=list)
    dependencies: list[TaskDependencyRead] = Field(default_factory=list)


class TaskPage(SQLModel):
    """One page of a project's task list."""

    items: list[TaskRead]
    total: int
    page: int
    limit: int
    pages: int


class AttachmentUploadResponse(SQLModel):
    attachment: TaskAttachmentRead
    task: TaskRead
