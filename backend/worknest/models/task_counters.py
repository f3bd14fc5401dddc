"""Per-prefix counter backing task display-id allocation."""

from __future__ import annotations

from datetime import datetime

from sqlmodel import Field

from worknest.core.time import utcnow
from worknest.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class TaskCounter(QueryModel, table=True):
    """Last display-id number handed out for one two-letter prefix."""

    __tablename__ = "task_counters"  # pyright: ignore[reportAssignmentType]

    prefix: str = Field(primary_key=True)
    last_value: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)
