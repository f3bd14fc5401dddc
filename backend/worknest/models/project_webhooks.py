"""Outbound webhook subscriptions for project events."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

INTEGRATION_TYPES = ("custom", "slack", "github")
WEBHOOK_EVENTS = (
    "task.created",
    "task.updated",
    "task.deleted",
    "task.status_changed",
    "comment.added",
)


class ProjectWebhook(QueryModel, table=True):
    """Target URL that receives signed JSON payloads for subscribed events."""

    __tablename__ = "project_webhooks"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    project_id: UUID = Field(foreign_key="projects.id", index=True)
    name: str
    url: str
    secret: str | None = None
    events: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    integration_type: str = Field(default="custom")
    headers: dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    active: bool = Field(default=True, index=True)
    created_by_id: UUID | None = Field(default=None, foreign_key="users.id")
    last_triggered_at: datetime | None = None
    last_status: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
