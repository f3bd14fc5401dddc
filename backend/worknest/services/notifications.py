"""Persisted in-app notifications and their realtime push to the recipient."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from worknest.core.logging import get_logger
from worknest.models.notifications import Notification
from worknest.models.projects import ProjectMember
from worknest.services.realtime import publish_user_event

if TYPE_CHECKING:
    from uuid import UUID

    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.projects import Project
    from worknest.models.tasks import Task, TaskComment
    from worknest.models.users import User

logger = get_logger(__name__)
NEW_NOTIFICATION_EVENT = "new-notification"


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "recipient_id": str(notification.recipient_id),
        "sender_id": str(notification.sender_id) if notification.sender_id else None,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "read": notification.read,
        "created_at": notification.created_at.isoformat(),
    }


def _task_data(task: Task) -> dict[str, Any]:
    return {
        "task_id": str(task.id),
        "display_id": task.display_id,
        "project_id": str(task.project_id),
    }


def _display_name(user: User | None) -> str:
    if user is None:
        return "Someone"
    return user.name or user.email or "Someone"


async def create_notification(
    session: AsyncSession,
    *,
    recipient_id: UUID,
    sender_id: UUID | None,
    type: str,  # noqa: A002
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> Notification:
    """Persist a notification and push it to the recipient's open connections."""
    notification = Notification(
        recipient_id=recipient_id,
        sender_id=sender_id,
        type=type,
        title=title,
        message=message,
        data=data or {},
    )
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    publish_user_event(recipient_id, NEW_NOTIFICATION_EVENT, serialize_notification(notification))
    logger.debug(
        "notification.created",
        extra={"notification_type": type, "recipient_id": str(recipient_id)},
    )
    return notification


async def notify_task_assigned(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
) -> Notification | None:
    if task.assignee_id is None or task.assignee_id == actor.id:
        return None
    return await create_notification(
        session,
        recipient_id=task.assignee_id,
        sender_id=actor.id,
        type="task_assigned",
        title="New task assigned",
        message=f'{_display_name(actor)} assigned you to "{task.title}"',
        data=_task_data(task),
    )


async def notify_task_status_changed(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
    previous_status: str,
) -> Notification | None:
    if task.assignee_id is None or task.assignee_id == actor.id:
        return None
    return await create_notification(
        session,
        recipient_id=task.assignee_id,
        sender_id=actor.id,
        type="task_status_changed",
        title="Task status changed",
        message=f'"{task.title}" moved from {previous_status} to {task.status}',
        data={**_task_data(task), "from": previous_status, "to": task.status},
    )


async def notify_task_comment(
    session: AsyncSession,
    *,
    task: Task,
    comment: TaskComment,
    actor: User,
) -> list[Notification]:
    """Notify every other project member about a new comment."""
    members = await ProjectMember.objects.filter_by(project_id=task.project_id).all(session)
    created: list[Notification] = []
    for member in members:
        if member.user_id == actor.id:
            continue
        created.append(
            await create_notification(
                session,
                recipient_id=member.user_id,
                sender_id=actor.id,
                type="task_comment",
                title="New comment",
                message=f'{_display_name(actor)} commented on "{task.title}"',
                data={**_task_data(task), "comment_id": str(comment.id)},
            ),
        )
    return created


async def notify_file_uploaded(
    session: AsyncSession,
    *,
    task: Task,
    actor: User,
    filename: str,
) -> Notification | None:
    if task.assignee_id is None or task.assignee_id == actor.id:
        return None
    return await create_notification(
        session,
        recipient_id=task.assignee_id,
        sender_id=actor.id,
        type="task_file_uploaded",
        title="File uploaded",
        message=f'{_display_name(actor)} uploaded {filename} to "{task.title}"',
        data={**_task_data(task), "filename": filename},
    )


async def notify_task_due_soon(session: AsyncSession, *, task: Task) -> Notification | None:
    if task.assignee_id is None:
        return None
    due = task.due_date.date().isoformat() if task.due_date else "soon"
    return await create_notification(
        session,
        recipient_id=task.assignee_id,
        sender_id=None,
        type="task_due_soon",
        title="Task due soon",
        message=f'"{task.title}" is due {due}',
        data=_task_data(task),
    )


async def notify_project_invite(
    session: AsyncSession,
    *,
    project: Project,
    user_id: UUID,
    actor: User,
    role: str,
) -> Notification:
    return await create_notification(
        session,
        recipient_id=user_id,
        sender_id=actor.id,
        type="project_invite",
        title="Added to project",
        message=f'{_display_name(actor)} added you to "{project.title}" as {role}',
        data={"project_id": str(project.id), "role": role},
    )
