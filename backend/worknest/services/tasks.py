"""Task mutation workflows: validate, persist, broadcast, then side effects.

Every mutation follows the same order. Authorization and validation run first
and raise `HTTPException` without touching the database. The primary write is
committed next, then the change is published to the project room and the
cached task lists are invalidated. The board column layout, notifications,
activity entries and webhook fan-out run last inside `best_effort`, so their
failures never undo or fail the committed change.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import HTTPException, status
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.core.time import utcnow
from worknest.db import crud
from worknest.models.projects import Project, ProjectMember
from worknest.models.task_dependencies import TaskDependency
from worknest.models.tasks import Task, TaskAttachment, TaskComment
from worknest.schemas.tasks import (
    AttachmentUploadResponse,
    TaskAttachmentRead,
    TaskCommentRead,
    TaskDependencyRead,
    TaskPage,
    TaskRead,
)
from worknest.services import activity, notifications
from worknest.services.board_access import (
    can_comment,
    can_delete_attachment,
    can_delete_task,
    can_upload,
    get_membership,
)
from worknest.services.cache import invalidate_project_task_lists
from worknest.services.file_storage import StorageError
from worknest.services.integrations.dispatch import emit_project_event
from worknest.services.realtime import publish_project_event, stamp
from worknest.services.side_effects import best_effort, detached
from worknest.services.task_ids import allocate_display_id_for_project
from worknest.services.task_state import (
    BlockedTransitionError,
    completion_time,
    ensure_transition_allowed,
    rebuild_board_columns,
)

if TYPE_CHECKING:
    from fastapi import UploadFile
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.users import User
    from worknest.schemas.tasks import CommentCreate, DependencyCreate, TaskCreate, TaskUpdate
    from worknest.services.file_storage import FileStorage

logger = get_logger(__name__)
_UPLOAD_CHUNK_BYTES = 1024 * 1024
FILTER_ALL = "all"


class TaskVersionConflict(Exception):
    """Raised when `expected_version` no longer matches the stored task."""

    def __init__(self, expected: int, current: int | None) -> None:
        super().__init__("Task was modified by someone else")
        self.expected = expected
        self.current = current


@dataclass(frozen=True)
class TaskListFilters:
    """Optional task list filters; `all` (or empty) disables a filter."""

    search: str | None = None
    assignee: str | None = None
    status: str | None = None
    priority: str | None = None
    due_date_from: datetime | None = None
    due_date_to: datetime | None = None


def _bad_request(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


def _forbidden(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=message)


def _not_found(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=message)


def blocked_http_error(exc: BlockedTransitionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_detail())


def conflict_http_error(exc: TaskVersionConflict) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "code": "version_conflict",
            "message": str(exc),
            "expected_version": exc.expected,
            "current_version": exc.current,
        },
    )


# Serialization


async def serialize_task(session: AsyncSession, task: Task) -> TaskRead:
    """Build the full task read model including child collections."""
    comments = await TaskComment.objects.filter_by(task_id=task.id).order_by(
        col(TaskComment.created_at),
    ).all(session)
    attachments = await TaskAttachment.objects.filter_by(task_id=task.id).order_by(
        col(TaskAttachment.uploaded_at),
    ).all(session)
    dependency_rows = await session.exec(
        select(TaskDependency, Task)
        .join(Task, col(Task.id) == col(TaskDependency.depends_on_task_id))
        .where(col(TaskDependency.task_id) == task.id)
        .order_by(col(TaskDependency.created_at)),
    )
    dependencies = [
        TaskDependencyRead(
            id=edge.id,
            depends_on_task_id=edge.depends_on_task_id,
            dependency_type=edge.dependency_type,
            display_id=target.display_id,
            title=target.title,
            status=target.status,
            created_at=edge.created_at,
        )
        for edge, target in dependency_rows
    ]
    return TaskRead.model_validate(
        {
            **task.model_dump(),
            "tags": list(task.tags or []),
            "comments": [TaskCommentRead.model_validate(item) for item in comments],
            "attachments": [TaskAttachmentRead.model_validate(item) for item in attachments],
            "dependencies": dependencies,
        },
    )


async def load_task_read(session: AsyncSession, task_id: UUID) -> TaskRead:
    task = await Task.objects.by_id(task_id).first(session)
    if task is None:
        raise _not_found("Task not found")
    return await serialize_task(session, task)


def _event_payload(task_read: TaskRead, **extra: Any) -> dict[str, Any]:
    return stamp({"task": task_read.model_dump(mode="json"), **extra})


async def _broadcast(project_id: UUID, event: str, data: dict[str, Any]) -> None:
    publish_project_event(project_id, event, data)
    await invalidate_project_task_lists(project_id)


# Reads


def _apply_filters(statement: Any, filters: TaskListFilters) -> Any:
    if filters.search:
        pattern = f"%{filters.search.strip()}%"
        statement = statement.where(
            or_(col(Task.title).ilike(pattern), col(Task.description).ilike(pattern)),
        )
    if filters.assignee and filters.assignee != FILTER_ALL:
        if filters.assignee == "unassigned":
            statement = statement.where(col(Task.assignee_id).is_(None))
        else:
            try:
                assignee_id = UUID(filters.assignee)
            except ValueError as exc:
                raise _bad_request("assignee must be a user id, 'unassigned' or 'all'") from exc
            statement = statement.where(col(Task.assignee_id) == assignee_id)
    if filters.status and filters.status != FILTER_ALL:
        statement = statement.where(col(Task.status) == filters.status)
    if filters.priority and filters.priority != FILTER_ALL:
        statement = statement.where(col(Task.priority) == filters.priority)
    if filters.due_date_from is not None:
        statement = statement.where(col(Task.due_date) >= filters.due_date_from)
    if filters.due_date_to is not None:
        statement = statement.where(col(Task.due_date) <= filters.due_date_to)
    return statement


async def list_project_tasks(
    session: AsyncSession,
    project: Project,
    *,
    filters: TaskListFilters,
    page: int = 1,
    limit: int = 50,
) -> TaskPage:
    """Return one page of the project's tasks, newest first."""
    base = _apply_filters(select(Task).where(col(Task.project_id) == project.id), filters)
    total = int(
        (await session.exec(select(func.count()).select_from(base.subquery()))).one(),
    )
    rows = await session.exec(
        base.order_by(col(Task.created_at).desc()).offset((page - 1) * limit).limit(limit),
    )
    items = [await serialize_task(session, task) for task in rows.all()]
    return TaskPage(
        items=items,
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


# Validation helpers


async def _require_assignee_member(
    session: AsyncSession,
    project: Project,
    assignee_id: UUID | None,
) -> None:
    if assignee_id is None:
        return
    member = await get_membership(session, project_id=project.id, user_id=assignee_id)
    if member is None:
        raise _bad_request("Assignee must be a member of the project")


async def _require_parent_in_project(
    session: AsyncSession,
    project: Project,
    parent_task_id: UUID | None,
) -> None:
    if parent_task_id is None:
        return
    parent = await Task.objects.by_id(parent_task_id).first(session)
    if parent is None or parent.project_id != project.id:
        raise _bad_request("Parent task must belong to the same project")


async def _rebuild_columns(session: AsyncSession, project_id: UUID, task_id: UUID) -> None:
    async with best_effort("task.columns.rebuild", session=session, task_id=task_id):
        await rebuild_board_columns(session, project_id)


# Mutations


async def create_task(
    session: AsyncSession,
    *,
    payload: TaskCreate,
    project: Project,
    actor: User,
) -> TaskRead:
    """Create a task on `project` (membership with write access already checked)."""
    await _require_assignee_member(session, project, payload.assignee_id)
    await _require_parent_in_project(session, project, payload.parent_task_id)

    display_id = await allocate_display_id_for_project(session, project)
    now = utcnow()
    task = Task(
        display_id=display_id,
        title=payload.title,
        description=payload.description,
        project_id=project.id,
        parent_task_id=payload.parent_task_id,
        assignee_id=payload.assignee_id,
        status=payload.status,
        priority=payload.priority,
        due_date=payload.due_date,
        story_points=payload.story_points,
        tags=list(payload.tags),
        column_id=payload.column_id or payload.status,
        estimated_hours=payload.estimated_hours,
        completed_at=completion_time("todo", payload.status, None, now),
        created_by_user_id=actor.id,
        created_at=now,
        updated_at=now,
    )
    session.add(task)
    await session.commit()
    await session.refresh(task)
    task_id = task.id
    logger.info(
        "task.create.persisted",
        extra={"task_id": str(task_id), "display_id": display_id, "project_id": str(project.id)},
    )

    task_read = await serialize_task(session, task)
    task, actor, project_id = detached(task), detached(actor), project.id
    await _broadcast(project_id, "task-created", _event_payload(task_read, created_by=str(actor.id)))
    await _rebuild_columns(session, project_id, task_id)

    async with best_effort("task.create.notify", session=session, task_id=task_id):
        await notifications.notify_task_assigned(session, task=task, actor=actor)
    async with best_effort("task.create.activity", session=session, task_id=task_id):
        await activity.task_created(session, task=task, actor=actor)
    async with best_effort("task.create.webhooks", session=session, task_id=task_id):
        await emit_project_event(
            session,
            project_id,
            "task.created",
            {"task": task_read.model_dump(mode="json"), "actor_id": str(actor.id)},
        )
    return task_read


async def _write_update(
    session: AsyncSession,
    task: Task,
    values: dict[str, Any],
    expected_version: int | None,
) -> None:
    statement = update(Task).where(col(Task.id) == task.id)
    if expected_version is not None:
        statement = statement.where(col(Task.version) == expected_version)
    result = await session.exec(  # type: ignore[call-overload]
        statement.values(**values, version=Task.version + 1),
    )
    if result.rowcount == 0:
        await session.rollback()
        current = await session.exec(select(Task.version).where(col(Task.id) == task.id))
        raise TaskVersionConflict(expected_version or 0, current.first())
    await session.commit()
    await session.refresh(task)


async def update_task(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    payload: TaskUpdate,
    actor: User,
) -> TaskRead:
    """Apply a partial update, enforcing the completion gate and optional version check."""
    changes = payload.changes()
    if "assignee_id" in changes and changes["assignee_id"] != task.assignee_id:
        await _require_assignee_member(session, project, changes["assignee_id"])

    previous_status = task.status
    previous_assignee = task.assignee_id
    new_status = changes.get("status", previous_status)
    if new_status != previous_status:
        try:
            await ensure_transition_allowed(session, task, new_status)
        except BlockedTransitionError as exc:
            raise blocked_http_error(exc) from exc

    expected_version = payload.expected_version
    if expected_version is not None and expected_version != task.version:
        raise conflict_http_error(TaskVersionConflict(expected_version, task.version))

    now = utcnow()
    values: dict[str, Any] = {**changes, "updated_at": now}
    if new_status != previous_status:
        values["completed_at"] = completion_time(previous_status, new_status, task.completed_at, now)
        values.setdefault("column_id", new_status)
    if "due_date" in changes and changes["due_date"] != task.due_date:
        values["reminder_sent"] = False

    task_id = task.id
    try:
        await _write_update(session, task, values, expected_version)
    except TaskVersionConflict as exc:
        raise conflict_http_error(exc) from exc
    logger.info(
        "task.update.persisted",
        extra={"task_id": str(task_id), "fields": ",".join(sorted(changes)), "version": task.version},
    )

    task_read = await serialize_task(session, task)
    task, actor, project_id = detached(task), detached(actor), project.id
    await _broadcast(project_id, "task-updated", _event_payload(task_read, updated_by=str(actor.id)))

    status_changed = new_status != previous_status
    if status_changed:
        await _rebuild_columns(session, project_id, task_id)
    if task.assignee_id is not None and task.assignee_id != previous_assignee:
        async with best_effort("task.update.notify_assignee", session=session, task_id=task_id):
            await notifications.notify_task_assigned(session, task=task, actor=actor)
    if status_changed:
        async with best_effort("task.update.notify_status", session=session, task_id=task_id):
            await notifications.notify_task_status_changed(
                session,
                task=task,
                actor=actor,
                previous_status=previous_status,
            )
    async with best_effort("task.update.activity", session=session, task_id=task_id):
        if status_changed:
            await activity.task_moved(session, task=task, actor=actor, previous_status=previous_status)
        else:
            await activity.task_updated(session, task=task, actor=actor, fields=sorted(changes))
    async with best_effort("task.update.webhooks", session=session, task_id=task_id):
        body = {"task": task_read.model_dump(mode="json"), "actor_id": str(actor.id)}
        await emit_project_event(session, project_id, "task.updated", body)
        if status_changed:
            await emit_project_event(
                session,
                project_id,
                "task.status_changed",
                {**body, "from": previous_status, "to": new_status},
            )
    return task_read


async def delete_task_rows(session: AsyncSession, task_ids: list[UUID]) -> list[str]:
    """Delete tasks with their comments, attachments and dependency edges; no commit.

    Subtasks outside `task_ids` are detached rather than deleted. Returns the
    storage keys of the removed attachments.
    """
    if not task_ids:
        return []
    attachments = await TaskAttachment.objects.by_field_in("task_id", task_ids).all(session)
    await crud.delete_where(session, TaskComment, col(TaskComment.task_id).in_(task_ids))
    await crud.delete_where(session, TaskAttachment, col(TaskAttachment.task_id).in_(task_ids))
    await crud.delete_where(
        session,
        TaskDependency,
        or_(
            col(TaskDependency.task_id).in_(task_ids),
            col(TaskDependency.depends_on_task_id).in_(task_ids),
        ),
    )
    await session.exec(  # type: ignore[call-overload]
        update(Task)
        .where(col(Task.parent_task_id).in_(task_ids))
        .where(col(Task.id).not_in(task_ids))
        .values(parent_task_id=None),
    )
    await crud.delete_where(session, Task, col(Task.id).in_(task_ids))
    return [attachment.storage_key for attachment in attachments]


async def delete_task(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    member: ProjectMember,
    actor: User,
    storage: FileStorage,
) -> None:
    """Delete a task with its comments, attachments and dependency edges."""
    if not can_delete_task(member):
        raise _forbidden("Only project owners and admins can delete tasks")

    task_id, project_id = task.id, project.id
    snapshot, actor = detached(task), detached(actor)
    storage_keys = await delete_task_rows(session, [task_id])
    await session.commit()
    logger.info("task.delete.persisted", extra={"task_id": str(task_id), "project_id": str(project_id)})

    await _broadcast(
        project_id,
        "task-deleted",
        stamp({"task_id": str(task_id), "deleted_by": str(actor.id)}),
    )
    await _rebuild_columns(session, project_id, task_id)
    for storage_key in storage_keys:
        async with best_effort("task.delete.storage", storage_key=storage_key):
            await storage.delete(storage_key)
    async with best_effort("task.delete.activity", session=session, task_id=task_id):
        await activity.task_deleted(session, task=snapshot, actor=actor)
    async with best_effort("task.delete.webhooks", session=session, task_id=task_id):
        await emit_project_event(
            session,
            project_id,
            "task.deleted",
            {"task_id": str(task_id), "display_id": snapshot.display_id, "actor_id": str(actor.id)},
        )


async def add_comment(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    member: ProjectMember,
    payload: CommentCreate,
    actor: User,
) -> TaskRead:
    if not can_comment(project, member):
        raise _forbidden("Comments are not allowed for your role on this project")

    comment = TaskComment(task_id=task.id, user_id=actor.id, text=payload.text)
    session.add(comment)
    task.updated_at = utcnow()
    session.add(task)
    await session.commit()
    await session.refresh(comment)
    task_id = task.id

    task_read = await serialize_task(session, task)
    comment_read = TaskCommentRead.model_validate(comment)
    task, actor, comment, project_id = detached(task), detached(actor), detached(comment), project.id
    await _broadcast(
        project_id,
        "comment-added",
        stamp({"task_id": str(task_id), "comment": comment_read.model_dump(mode="json")}),
    )
    async with best_effort("comment.notify", session=session, task_id=task_id):
        await notifications.notify_task_comment(session, task=task, comment=comment, actor=actor)
    async with best_effort("comment.activity", session=session, task_id=task_id):
        await activity.comment_added(session, task=task, actor=actor)
    async with best_effort("comment.webhooks", session=session, task_id=task_id):
        await emit_project_event(
            session,
            project_id,
            "comment.added",
            {"task": task_read.model_dump(mode="json"), "comment": comment_read.model_dump(mode="json")},
        )
    return task_read


async def _read_upload(upload: UploadFile) -> bytes:
    limit = settings.upload_max_bytes
    chunks: list[bytes] = []
    total = 0
    while chunk := await upload.read(_UPLOAD_CHUNK_BYTES):
        total += len(chunk)
        if total > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Maximum size is {limit // (1024 * 1024)}MB",
            )
        chunks.append(chunk)
    return b"".join(chunks)


async def upload_attachment(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    member: ProjectMember,
    upload: UploadFile,
    actor: User,
    storage: FileStorage,
) -> AttachmentUploadResponse:
    if not can_upload(project, member):
        raise _forbidden("File uploads are not allowed for your role on this project")
    mime_type = (upload.content_type or "").lower()
    if mime_type not in settings.upload_allowed_mime_types:
        raise _bad_request(f"File type not allowed: {mime_type or 'unknown'}")
    data = await _read_upload(upload)
    if not data:
        raise _bad_request("Uploaded file is empty")
    original_name = upload.filename or "upload"

    try:
        stored = await storage.save(task_id=task.id, original_name=original_name, data=data)
    except StorageError as exc:
        logger.warning("task.attachment.storage_failed", extra={"task_id": str(task.id), "error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="File storage is unavailable",
        ) from exc

    attachment = TaskAttachment(
        task_id=task.id,
        filename=stored.filename,
        original_name=original_name,
        url=stored.url,
        storage_key=stored.storage_key,
        size=len(data),
        mime_type=mime_type,
        uploaded_by_id=actor.id,
    )
    session.add(attachment)
    task.updated_at = utcnow()
    session.add(task)
    await session.commit()
    await session.refresh(attachment)
    task_id = task.id

    task_read = await serialize_task(session, task)
    attachment_read = TaskAttachmentRead.model_validate(attachment)
    task, actor, project_id = detached(task), detached(actor), project.id
    await _broadcast(project_id, "task-updated", _event_payload(task_read, updated_by=str(actor.id)))
    async with best_effort("attachment.notify", session=session, task_id=task_id):
        await notifications.notify_file_uploaded(session, task=task, actor=actor, filename=original_name)
    async with best_effort("attachment.activity", session=session, task_id=task_id):
        await activity.file_event(session, task=task, actor=actor, filename=original_name)
    return AttachmentUploadResponse(
        attachment=attachment_read,
        task=task_read,
    )


async def delete_attachment(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    member: ProjectMember,
    attachment_id: UUID,
    actor: User,
    storage: FileStorage,
) -> None:
    if not can_upload(project, member):
        raise _forbidden("File uploads are not allowed for your role on this project")
    attachment = await TaskAttachment.objects.filter_by(id=attachment_id, task_id=task.id).first(session)
    if attachment is None:
        raise _not_found("Attachment not found")
    if not can_delete_attachment(member, task, attachment):
        raise _forbidden("Only the uploader, the assignee or a project admin can delete this file")

    storage_key = attachment.storage_key
    original_name = attachment.original_name
    task_id = task.id
    await session.delete(attachment)
    task.updated_at = utcnow()
    session.add(task)
    await session.commit()

    async with best_effort("attachment.storage_delete", storage_key=storage_key):
        await storage.delete(storage_key)
    task_read = await load_task_read(session, task_id)
    task, actor = detached(task), detached(actor)
    await _broadcast(project.id, "task-updated", _event_payload(task_read, updated_by=str(actor.id)))
    async with best_effort("attachment.activity", session=session, task_id=task_id):
        await activity.file_event(session, task=task, actor=actor, filename=original_name, deleted=True)


async def add_dependency(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    payload: DependencyCreate,
    actor: User,
) -> TaskRead:
    if payload.depends_on_task_id == task.id:
        raise _bad_request("A task cannot depend on itself")
    target = await Task.objects.by_id(payload.depends_on_task_id).first(session)
    if target is None or target.project_id != project.id:
        raise _not_found("Dependency task not found in this project")
    existing = await TaskDependency.objects.filter_by(
        task_id=task.id,
        depends_on_task_id=target.id,
    ).first(session)
    if existing is not None:
        raise _bad_request("Dependency already exists")

    task_id = task.id
    session.add(
        TaskDependency(
            task_id=task_id,
            depends_on_task_id=target.id,
            dependency_type=payload.dependency_type,
        ),
    )
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise _bad_request("Dependency already exists") from exc

    task_read = await load_task_read(session, task_id)
    await _broadcast(project.id, "task-updated", _event_payload(task_read, updated_by=str(actor.id)))
    return task_read


async def remove_dependency(
    session: AsyncSession,
    *,
    task: Task,
    project: Project,
    dependency_id: UUID,
    actor: User,
) -> TaskRead:
    edge = await TaskDependency.objects.filter_by(id=dependency_id, task_id=task.id).first(session)
    if edge is None:
        raise _not_found("Dependency not found")
    task_id = task.id
    await session.delete(edge)
    await session.commit()

    task_read = await load_task_read(session, task_id)
    await _broadcast(project.id, "task-updated", _event_payload(task_read, updated_by=str(actor.id)))
    return task_read
