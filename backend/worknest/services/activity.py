"""Project activity feed writers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from worknest.models.activity_logs import ActivityLog

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.projects import Project
    from worknest.models.tasks import Task
    from worknest.models.users import User


async def record_activity(
    session: AsyncSession,
    *,
    project_id: UUID,
    user_id: UUID | None,
    action: str,
    description: str,
    metadata: dict[str, Any] | None = None,
) -> ActivityLog:
    entry = ActivityLog(
        project_id=project_id,
        user_id=user_id,
        action=action,
        description=description,
        details=metadata or {},
    )
    session.add(entry)
    await session.commit()
    return entry


def _task_meta(task: Task, **extra: Any) -> dict[str, Any]:
    return {"task_id": str(task.id), "display_id": task.display_id, **extra}


async def task_created(session: AsyncSession, *, task: Task, actor: User) -> ActivityLog:
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="task_created",
        description=f'created task "{task.title}"',
        metadata=_task_meta(task),
    )


async def task_updated(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
    fields: list[str],
) -> ActivityLog:
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="task_updated",
        description=f'updated task "{task.title}"',
        metadata=_task_meta(task, fields=fields),
    )


async def task_moved(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
    previous_status: str,
) -> ActivityLog:
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="task_moved",
        description=f'moved "{task.title}" from {previous_status} to {task.status}',
        metadata=_task_meta(task, **{"from": previous_status, "to": task.status}),
    )


async def task_deleted(session: AsyncSession, *, task: Task, actor: User) -> ActivityLog:
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="task_deleted",
        description=f'deleted task "{task.title}"',
        metadata=_task_meta(task),
    )


async def comment_added(session: AsyncSession, *, task: Task, actor: User) -> ActivityLog:
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="comment_added",
        description=f'commented on "{task.title}"',
        metadata=_task_meta(task),
    )


async def file_event(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
    filename: str,
    deleted: bool = False,
) -> ActivityLog:
    verb = "removed" if deleted else "uploaded"
    return await record_activity(
        session,
        project_id=task.project_id,
        user_id=actor.id,
        action="file_deleted" if deleted else "file_uploaded",
        description=f'{verb} {filename} on "{task.title}"',
        metadata=_task_meta(task, filename=filename),
    )


async def project_created(session: AsyncSession, *, project: Project, actor: User) -> ActivityLog:
    return await record_activity(
        session,
        project_id=project.id,
        user_id=actor.id,
        action="project_created",
        description=f'created project "{project.title}"',
    )


async def project_updated(
    session: AsyncSession,
    *,
    project: Project,
    actor: User,
    fields: list[str],
) -> ActivityLog:
    return await record_activity(
        session,
        project_id=project.id,
        user_id=actor.id,
        action="project_updated",
        description=f'updated project "{project.title}"',
        metadata={"fields": fields},
    )


async def member_event(
    session: AsyncSession,
    *,
    project_id: UUID,
    actor: User,
    action: str,
    member_user_id: UUID,
    role: str,
) -> ActivityLog:
    """Record `member_added`, `member_removed` or `member_role_changed`."""
    verbs = {
        "member_added": f"added a member as {role}",
        "member_removed": "removed a member",
        "member_role_changed": f"changed a member's role to {role}",
    }
    return await record_activity(
        session,
        project_id=project_id,
        user_id=actor.id,
        action=action,
        description=verbs[action],
        metadata={"member_user_id": str(member_user_id), "role": role},
    )
