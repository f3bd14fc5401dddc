"""Reusable FastAPI dependencies for auth and project/task access.

Routes compose these instead of repeating membership checks: each resolves
the caller, loads the project (or task and its project) or returns 404, and
runs the board access guard at the level the route needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import Depends, HTTPException, status

from worknest.core.auth import AuthContext, get_auth_context
from worknest.db.session import get_session
from worknest.models.projects import Project
from worknest.models.tasks import Task
from worknest.services.board_access import AccessLevel, BoardAccessDenied, authorize
from worknest.services.file_storage import get_file_storage

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.projects import ProjectMember
    from worknest.models.users import User

AUTH_DEP = Depends(get_auth_context)
SESSION_DEP = Depends(get_session)
STORAGE_DEP = Depends(get_file_storage)


def require_user(auth: AuthContext = AUTH_DEP) -> User:
    """Return the authenticated user."""
    return auth.user


USER_DEP = Depends(require_user)


@dataclass
class ProjectAccess:
    """Caller's resolved access to one project."""

    project: Project
    member: ProjectMember
    user: User


@dataclass
class TaskAccess(ProjectAccess):
    """Caller's resolved access to one task and its project."""

    task: Task


async def get_project_or_404(session: AsyncSession, project_id: UUID) -> Project:
    project = await Project.objects.by_id(project_id).first(session)
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return project


async def require_project_access(
    session: AsyncSession,
    *,
    user: User,
    project: Project,
    level: AccessLevel,
) -> ProjectAccess:
    """Run the board guard and translate a denial into HTTP 403."""
    try:
        member = await authorize(session, user=user, project=project, level=level)
    except BoardAccessDenied as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    return ProjectAccess(project=project, member=member, user=user)


async def _project_access(
    session: AsyncSession,
    user: User,
    project_id: UUID,
    level: AccessLevel,
) -> ProjectAccess:
    project = await get_project_or_404(session, project_id)
    return await require_project_access(session, user=user, project=project, level=level)


async def get_project_for_read(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> ProjectAccess:
    return await _project_access(session, user, project_id, "read")


async def get_project_for_write(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> ProjectAccess:
    return await _project_access(session, user, project_id, "write")


async def get_project_for_admin(
    project_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> ProjectAccess:
    return await _project_access(session, user, project_id, "admin")


async def _task_access(
    session: AsyncSession,
    user: User,
    task_id: UUID,
    level: AccessLevel,
) -> TaskAccess:
    task = await Task.objects.by_id(task_id).first(session)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    access = await _project_access(session, user, task.project_id, level)
    return TaskAccess(project=access.project, member=access.member, user=user, task=task)


async def get_task_for_read(
    task_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> TaskAccess:
    return await _task_access(session, user, task_id, "read")


async def get_task_for_write(
    task_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> TaskAccess:
    return await _task_access(session, user, task_id, "write")


PROJECT_READ_DEP = Depends(get_project_for_read)
PROJECT_WRITE_DEP = Depends(get_project_for_write)
PROJECT_ADMIN_DEP = Depends(get_project_for_admin)
TASK_READ_DEP = Depends(get_task_for_read)
TASK_WRITE_DEP = Depends(get_task_for_write)
