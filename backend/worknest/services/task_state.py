"""Task status transitions, the dependency gate on completion and board columns."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import update
from sqlmodel import col, select

from worknest.core.time import utcnow
from worknest.models.projects import Project
from worknest.models.task_dependencies import TaskDependency
from worknest.models.tasks import Task

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlmodel.ext.asyncio.session import AsyncSession

TASK_STATUSES = ("todo", "inprogress", "done")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
DONE_STATUS = "done"


class BlockedTransitionError(Exception):
    """Raised when a task cannot move to done while blocking dependencies are open."""

    def __init__(self, titles: list[str], task_ids: list[UUID]) -> None:
        super().__init__("Task is blocked by incomplete dependencies")
        self.titles = titles
        self.task_ids = task_ids

    def to_detail(self) -> dict[str, object]:
        return {
            "code": "task_blocked",
            "message": "Cannot complete task. It is blocked by incomplete tasks.",
            "blocking_tasks": self.titles,
            "blocked_by_task_ids": [str(task_id) for task_id in self.task_ids],
        }


async def open_blocking_dependencies(session: AsyncSession, task: Task) -> list[Task]:
    """Return targets of the task's `blocking` edges that are not yet done."""
    statement = (
        select(Task)
        .join(TaskDependency, col(TaskDependency.depends_on_task_id) == col(Task.id))
        .where(col(TaskDependency.task_id) == task.id)
        .where(col(TaskDependency.dependency_type) == "blocking")
        .where(col(Task.status) != DONE_STATUS)
        .order_by(col(TaskDependency.created_at))
    )
    return list(await session.exec(statement))


async def blocking_dependency_titles(session: AsyncSession, task: Task) -> list[str]:
    return [blocker.title for blocker in await open_blocking_dependencies(session, task)]


async def ensure_transition_allowed(
    session: AsyncSession,
    task: Task,
    new_status: str,
) -> None:
    """Reject entry into `done` while any blocking dependency is still open.

    Every other transition, including done -> todo, is allowed.
    """
    if new_status != DONE_STATUS or task.status == DONE_STATUS:
        return
    blockers = await open_blocking_dependencies(session, task)
    if blockers:
        raise BlockedTransitionError(
            [blocker.title for blocker in blockers],
            [blocker.id for blocker in blockers],
        )


def completion_time(
    previous_status: str,
    new_status: str,
    completed_at: datetime | None,
    now: datetime | None = None,
) -> datetime | None:
    """`completed_at` value after moving from `previous_status` to `new_status`."""
    if new_status != DONE_STATUS:
        return None
    if previous_status == DONE_STATUS and completed_at is not None:
        return completed_at
    return now or utcnow()


def build_board_columns(
    columns: list[dict[str, Any]] | None,
    tasks: Iterable[tuple[UUID, str]],
) -> list[dict[str, Any]]:
    """Return `columns` with each column's task ids recomputed from task statuses.

    Columns are display data only; status stays the source of truth. A task
    lands in the column whose id equals its status, in the order `tasks`
    yields them. Columns with no matching status end up empty.
    """
    by_status: dict[str, list[str]] = {}
    for task_id, task_status in tasks:
        by_status.setdefault(task_status, []).append(str(task_id))
    return [{**column, "task_ids": by_status.get(column.get("id"), [])} for column in columns or []]


async def rebuild_board_columns(session: AsyncSession, project_id: UUID) -> bool:
    """Recompute and store the project's column layout from its tasks; commits.

    The project row is written before anything is read, so concurrent rebuilds
    of one project run one after another and each sees every task committed
    before it. Returns True when the stored layout changed.
    """
    project_row = col(Project.id) == project_id
    await session.exec(  # type: ignore[call-overload]
        update(Project).where(project_row).values(columns=Project.columns),
    )
    stored = (await session.exec(select(Project.columns).where(project_row))).first()
    if stored is None:
        await session.rollback()
        return False
    tasks = await session.exec(
        select(Task.id, Task.status)
        .where(col(Task.project_id) == project_id)
        .order_by(col(Task.created_at), col(Task.display_id)),
    )
    columns = build_board_columns(stored, tasks.all())
    if columns == stored:
        await session.commit()
        return False
    await session.exec(  # type: ignore[call-overload]
        update(Project).where(project_row).values(columns=columns, updated_at=utcnow()),
    )
    await session.commit()
    return True
