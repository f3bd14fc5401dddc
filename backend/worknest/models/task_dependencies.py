"""Typed dependency edges between tasks in one project."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, UniqueConstraint
from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)

DEPENDENCY_TYPES = ("blocking", "blocked_by", "related")


class TaskDependency(QueryModel, table=True):
    """Edge from `task_id` to `depends_on_task_id`; `blocking` edges gate completion."""

    __tablename__ = "task_dependencies"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint(
            "task_id",
            "depends_on_task_id",
            name="uq_task_dependencies_task_id_depends_on_task_id",
        ),
        CheckConstraint(
            "task_id <> depends_on_task_id",
            name="ck_task_dependencies_no_self",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    task_id: UUID = Field(foreign_key="tasks.id", index=True)
    depends_on_task_id: UUID = Field(foreign_key="tasks.id", index=True)
    dependency_type: str = Field(default="blocking")
    created_at: datetime = Field(default_factory=utcnow)
