"""Structured error payload schemas used in route documentation."""

from __future__ import annotations

from pydantic import Field
from sqlmodel import SQLModel


class ErrorResponse(SQLModel):
    """Error envelope produced by the exception handlers."""

    detail: str | dict[str, object] | list[object]
    request_id: str | None = Field(
        default=None,
        description="Request correlation identifier injected by middleware.",
    )


class BlockedTaskDetail(SQLModel):
    """Detail payload for a task that cannot move to done yet."""

    code: str = "task_blocked"
    message: str
    blocking_tasks: list[str] = Field(default_factory=list)
    blocked_by_task_ids: list[str] = Field(default_factory=list)


class BlockedTaskError(SQLModel):
    detail: BlockedTaskDetail
