"""Task endpoints: list, read, create, update, delete and task children."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, File, Query, Request, UploadFile, status

from worknest.api.deps import (
    PROJECT_READ_DEP,
    SESSION_DEP,
    STORAGE_DEP,
    TASK_READ_DEP,
    TASK_WRITE_DEP,
    USER_DEP,
    ProjectAccess,
    TaskAccess,
    get_project_or_404,
    require_project_access,
)
from worknest.core.logging import get_logger
from worknest.schemas.common import OkResponse
from worknest.schemas.errors import BlockedTaskError, ErrorResponse
from worknest.schemas.tasks import (
    AttachmentUploadResponse,
    CommentCreate,
    DependencyCreate,
    TaskCreate,
    TaskPage,
    TaskRead,
    TaskUpdate,
)
from worknest.services import cache
from worknest.services import tasks as task_service
from worknest.services.tasks import TaskListFilters

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.users import User
    from worknest.services.file_storage import FileStorage

router = APIRouter(prefix="/tasks", tags=["tasks"])
logger = get_logger(__name__)
FILE_DEP = File(...)
SEARCH_QUERY = Query(default=None, max_length=200)
FILTER_QUERY = Query(default=None)
DATE_QUERY = Query(default=None)
PAGE_QUERY = Query(default=1, ge=1)
LIMIT_QUERY = Query(default=50, ge=1, le=100)


def _cache_path(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


@router.get("/project/{project_id}", response_model=TaskPage)
async def list_project_tasks(
    request: Request,
    search: str | None = SEARCH_QUERY,
    assignee: str | None = FILTER_QUERY,
    status_filter: str | None = Query(default=None, alias="status"),
    priority: str | None = FILTER_QUERY,
    due_date_from: datetime | None = DATE_QUERY,
    due_date_to: datetime | None = DATE_QUERY,
    page: int = PAGE_QUERY,
    limit: int = LIMIT_QUERY,
    access: ProjectAccess = PROJECT_READ_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskPage:
    """List a project's tasks, served from the per-user cache when warm."""
    key = cache.cache_key(access.user.id, _cache_path(request))
    cached = await cache.get_cached(key)
    if cached is not None:
        logger.debug("tasks.list.cache_hit", extra={"project_id": str(access.project.id)})
        return TaskPage.model_validate(cached)
    result = await task_service.list_project_tasks(
        session,
        access.project,
        filters=TaskListFilters(
            search=search,
            assignee=assignee,
            status=status_filter,
            priority=priority,
            due_date_from=due_date_from,
            due_date_to=due_date_to,
        ),
        page=page,
        limit=limit,
    )
    await cache.set_cached(key, result.model_dump(mode="json"))
    return result


@router.get("/{task_id}", response_model=TaskRead)
async def get_task(
    access: TaskAccess = TASK_READ_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskRead:
    return await task_service.serialize_task(session, access.task)


@router.post(
    "",
    response_model=TaskRead,
    status_code=status.HTTP_201_CREATED,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
)
async def create_task(
    payload: TaskCreate,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> TaskRead:
    """Create a task; the caller needs write access to the target project."""
    project = await get_project_or_404(session, payload.project_id)
    await require_project_access(session, user=user, project=project, level="write")
    return await task_service.create_task(session, payload=payload, project=project, actor=user)


@router.put(
    "/{task_id}",
    response_model=TaskRead,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": BlockedTaskError},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)
async def update_task(
    payload: TaskUpdate,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskRead:
    """Update task fields; moving to done is refused while blocking tasks are open."""
    return await task_service.update_task(
        session,
        task=access.task,
        project=access.project,
        payload=payload,
        actor=access.user,
    )


@router.delete("/{task_id}", response_model=OkResponse)
async def delete_task(
    access: TaskAccess = TASK_READ_DEP,
    session: AsyncSession = SESSION_DEP,
    storage: FileStorage = STORAGE_DEP,
) -> OkResponse:
    """Delete a task (project owners and admins only)."""
    await task_service.delete_task(
        session,
        task=access.task,
        project=access.project,
        member=access.member,
        actor=access.user,
        storage=storage,
    )
    return OkResponse()


@router.post("/{task_id}/comments", response_model=TaskRead)
async def add_comment(
    payload: CommentCreate,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskRead:
    return await task_service.add_comment(
        session,
        task=access.task,
        project=access.project,
        member=access.member,
        payload=payload,
        actor=access.user,
    )


@router.post("/{task_id}/attachments", response_model=AttachmentUploadResponse)
async def upload_attachment(
    file: UploadFile = FILE_DEP,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
    storage: FileStorage = STORAGE_DEP,
) -> AttachmentUploadResponse:
    return await task_service.upload_attachment(
        session,
        task=access.task,
        project=access.project,
        member=access.member,
        upload=file,
        actor=access.user,
        storage=storage,
    )


@router.delete("/{task_id}/attachments/{attachment_id}", response_model=OkResponse)
async def delete_attachment(
    attachment_id: UUID,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
    storage: FileStorage = STORAGE_DEP,
) -> OkResponse:
    await task_service.delete_attachment(
        session,
        task=access.task,
        project=access.project,
        member=access.member,
        attachment_id=attachment_id,
        actor=access.user,
        storage=storage,
    )
    return OkResponse()


@router.post("/{task_id}/dependencies", response_model=TaskRead)
async def add_dependency(
    payload: DependencyCreate,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskRead:
    return await task_service.add_dependency(
        session,
        task=access.task,
        project=access.project,
        payload=payload,
        actor=access.user,
    )


@router.delete("/{task_id}/dependencies/{dependency_id}", response_model=TaskRead)
async def remove_dependency(
    dependency_id: UUID,
    access: TaskAccess = TASK_WRITE_DEP,
    session: AsyncSession = SESSION_DEP,
) -> TaskRead:
    return await task_service.remove_dependency(
        session,
        task=access.task,
        project=access.project,
        dependency_id=dependency_id,
        actor=access.user,
    )
