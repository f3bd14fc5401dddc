"""Workspace, project, membership, activity and board event stream endpoints."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, Request, status
from sqlmodel import col, select
from sse_starlette.sse import EventSourceResponse

from worknest.api.deps import (
    PROJECT_ADMIN_DEP,
    PROJECT_READ_DEP,
    SESSION_DEP,
    STORAGE_DEP,
    USER_DEP,
    ProjectAccess,
)
from worknest.core.logging import get_logger
from worknest.core.time import utcnow
from worknest.db import crud
from worknest.models.activity_logs import ActivityLog
from worknest.models.project_webhooks import ProjectWebhook
from worknest.models.projects import Project, ProjectMember
from worknest.models.tasks import Task
from worknest.models.users import User
from worknest.models.workspaces import Workspace
from worknest.schemas.common import OkResponse
from worknest.schemas.projects import (
    ActivityLogRead,
    ProjectCreate,
    ProjectMemberCreate,
    ProjectMemberRead,
    ProjectMemberUpdate,
    ProjectRead,
    ProjectUpdate,
    WorkspaceCreate,
    WorkspaceRead,
)
from worknest.services import activity, notifications
from worknest.services.board_access import can_delete_project
from worknest.services.cache import invalidate_project_task_lists
from worknest.services.realtime import hub, project_room, publish_project_event, stamp
from worknest.services.side_effects import best_effort, detached
from worknest.services.tasks import delete_task_rows

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.services.file_storage import FileStorage

router = APIRouter(tags=["projects"])
logger = get_logger(__name__)
ACTIVITY_LIMIT_QUERY = Query(default=50, ge=1, le=200)
ACTIVITY_OFFSET_QUERY = Query(default=0, ge=0)
STREAM_POLL_SECONDS = 1.0


async def _project_read(session: AsyncSession, project: Project) -> ProjectRead:
    members = await ProjectMember.objects.filter_by(project_id=project.id).order_by(
        col(ProjectMember.joined_at),
    ).all(session)
    return ProjectRead.model_validate(
        {
            **project.model_dump(),
            "members": [ProjectMemberRead.model_validate(item) for item in members],
        },
    )


async def _member_or_404(session: AsyncSession, project_id: UUID, user_id: UUID) -> ProjectMember:
    member = await ProjectMember.objects.filter_by(project_id=project_id, user_id=user_id).first(
        session,
    )
    if member is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
    return member


# Workspaces


@router.post("/workspaces", response_model=WorkspaceRead, status_code=status.HTTP_201_CREATED)
async def create_workspace(
    payload: WorkspaceCreate,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> WorkspaceRead:
    workspace = Workspace(name=payload.name, owner_id=user.id)
    session.add(workspace)
    await session.commit()
    await session.refresh(workspace)
    return WorkspaceRead.model_validate(workspace)


@router.get("/workspaces", response_model=list[WorkspaceRead])
async def list_workspaces(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> list[WorkspaceRead]:
    workspaces = await Workspace.objects.filter_by(owner_id=user.id).order_by(
        col(Workspace.created_at),
    ).all(session)
    return [WorkspaceRead.model_validate(item) for item in workspaces]


# Projects


@router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    payload: ProjectCreate,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> ProjectRead:
    """Create a project; the creator becomes its only owner."""
    if payload.workspace_id is not None:
        workspace = await Workspace.objects.by_id(payload.workspace_id).first(session)
        if workspace is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Workspace not found")
    project = Project(
        workspace_id=payload.workspace_id,
        title=payload.title,
        description=payload.description,
        color=payload.color,
        owner_id=user.id,
    )
    session.add(project)
    await session.flush()
    session.add(ProjectMember(project_id=project.id, user_id=user.id, role="owner"))
    await session.commit()
    await session.refresh(project)
    logger.info("project.create.persisted", extra={"project_id": str(project.id)})
    result = await _project_read(session, project)
    async with best_effort("project.create.activity", session=session, project_id=result.id):
        await activity.project_created(session, project=project, actor=user)
    return result


@router.get("/projects", response_model=list[ProjectRead])
async def list_projects(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> list[ProjectRead]:
    """List every project the caller is a member of."""
    statement = (
        select(Project)
        .join(ProjectMember, col(ProjectMember.project_id) == col(Project.id))
        .where(col(ProjectMember.user_id) == user.id)
        .order_by(col(Project.created_at).desc())
    )
    projects = (await session.exec(statement)).all()
    return [await _project_read(session, project) for project in projects]


@router.get("/projects/{project_id}", response_model=ProjectRead)
async def get_project(
    access: ProjectAccess = PROJECT_READ_DEP,
    session: AsyncSession = SESSION_DEP,
) -> ProjectRead:
    return await _project_read(session, access.project)


@router.patch("/projects/{project_id}", response_model=ProjectRead)
async def update_project(
    payload: ProjectUpdate,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> ProjectRead:
    """Update project details and collaboration toggles (owners and admins)."""
    updates = payload.model_dump(exclude_unset=True, exclude_none=True)
    project = access.project
    crud.patch(project, updates)
    project.updated_at = utcnow()
    session.add(project)
    await session.commit()
    await session.refresh(project)
    result = await _project_read(session, project)
    project_id, actor = result.id, detached(access.user)
    publish_project_event(
        project_id,
        "project-updated",
        stamp({"project": result.model_dump(mode="json")}),
    )
    async with best_effort("project.update.activity", session=session, project_id=project_id):
        await activity.project_updated(session, project=project, actor=actor, fields=sorted(updates))
    return result


@router.delete("/projects/{project_id}", response_model=OkResponse)
async def delete_project(
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
    storage: FileStorage = STORAGE_DEP,
) -> OkResponse:
    """Delete a project with its tasks, members, activity and webhooks (owner only)."""
    project = access.project
    if not can_delete_project(project, access.member):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the project owner can delete the project",
        )
    project_id, actor_id = project.id, access.user.id
    task_ids = list(await session.exec(select(Task.id).where(col(Task.project_id) == project_id)))
    storage_keys = await delete_task_rows(session, task_ids)
    await crud.delete_where(session, ActivityLog, col(ActivityLog.project_id) == project_id)
    await crud.delete_where(session, ProjectWebhook, col(ProjectWebhook.project_id) == project_id)
    await crud.delete_where(session, ProjectMember, col(ProjectMember.project_id) == project_id)
    await session.delete(project)
    await session.commit()
    logger.info(
        "project.delete.persisted",
        extra={"project_id": str(project_id), "task_count": len(task_ids)},
    )

    publish_project_event(
        project_id,
        "project-deleted",
        stamp({"project_id": str(project_id), "deleted_by": str(actor_id)}),
    )
    await invalidate_project_task_lists(project_id)
    for storage_key in storage_keys:
        async with best_effort("project.delete.storage", storage_key=storage_key):
            await storage.delete(storage_key)
    return OkResponse()


# Members


@router.post(
    "/projects/{project_id}/members",
    response_model=ProjectMemberRead,
    status_code=status.HTTP_201_CREATED,
)
async def add_project_member(
    payload: ProjectMemberCreate,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> ProjectMemberRead:
    project_id = access.project.id
    invitee = await User.objects.by_id(payload.user_id).first(session)
    if invitee is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    existing = await ProjectMember.objects.filter_by(
        project_id=project_id,
        user_id=payload.user_id,
    ).first(session)
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User is already a member of this project",
        )
    member = ProjectMember(project_id=project_id, user_id=payload.user_id, role=payload.role)
    session.add(member)
    await session.commit()
    await session.refresh(member)
    result = ProjectMemberRead.model_validate(member)
    project, actor = detached(access.project), detached(access.user)

    publish_project_event(project_id, "member-added", stamp({"member": result.model_dump(mode="json")}))
    async with best_effort("project.member.notify", session=session, project_id=project_id):
        await notifications.notify_project_invite(
            session,
            project=project,
            user_id=result.user_id,
            actor=actor,
            role=result.role,
        )
    async with best_effort("project.member.activity", session=session, project_id=project_id):
        await activity.member_event(
            session,
            project_id=project_id,
            actor=actor,
            action="member_added",
            member_user_id=result.user_id,
            role=result.role,
        )
    return result


@router.patch("/projects/{project_id}/members/{user_id}", response_model=ProjectMemberRead)
async def update_project_member(
    user_id: UUID,
    payload: ProjectMemberUpdate,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> ProjectMemberRead:
    """Change a member's role; ownership cannot be granted or taken away here."""
    project_id = access.project.id
    member = await _member_or_404(session, project_id, user_id)
    if member.role == "owner":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The project owner's role cannot be changed",
        )
    member.role = payload.role
    session.add(member)
    await session.commit()
    await session.refresh(member)
    result = ProjectMemberRead.model_validate(member)
    actor = detached(access.user)
    publish_project_event(project_id, "member-updated", stamp({"member": result.model_dump(mode="json")}))
    async with best_effort("project.member.activity", session=session, project_id=project_id):
        await activity.member_event(
            session,
            project_id=project_id,
            actor=actor,
            action="member_role_changed",
            member_user_id=user_id,
            role=result.role,
        )
    return result


@router.delete("/projects/{project_id}/members/{user_id}", response_model=OkResponse)
async def remove_project_member(
    user_id: UUID,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> OkResponse:
    project_id = access.project.id
    member = await _member_or_404(session, project_id, user_id)
    if member.role == "owner":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The project owner cannot be removed",
        )
    role = member.role
    await session.delete(member)
    await session.commit()
    actor = detached(access.user)
    publish_project_event(project_id, "member-removed", stamp({"user_id": str(user_id)}))
    async with best_effort("project.member.activity", session=session, project_id=project_id):
        await activity.member_event(
            session,
            project_id=project_id,
            actor=actor,
            action="member_removed",
            member_user_id=user_id,
            role=role,
        )
    return OkResponse()


# Activity and events


@router.get("/projects/{project_id}/activity", response_model=list[ActivityLogRead])
async def list_project_activity(
    limit: int = ACTIVITY_LIMIT_QUERY,
    offset: int = ACTIVITY_OFFSET_QUERY,
    access: ProjectAccess = PROJECT_READ_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[ActivityLogRead]:
    """Newest-first activity feed of a project."""
    entries = await (
        ActivityLog.objects.filter_by(project_id=access.project.id)
        .order_by(col(ActivityLog.created_at).desc())
        .offset(offset)
        .limit(limit)
        .all(session)
    )
    return [ActivityLogRead.model_validate(entry) for entry in entries]


@router.get("/projects/{project_id}/events")
async def stream_project_events(
    request: Request,
    access: ProjectAccess = PROJECT_READ_DEP,
) -> EventSourceResponse:
    """Stream the project's board events via server-sent events."""
    project_id, user_id = access.project.id, access.user.id
    subscriber = hub.connect(user_id)
    hub.join(subscriber, project_room(project_id))
    logger.info(
        "realtime.sse.connected",
        extra={"project_id": str(project_id), "user_id": str(user_id)},
    )

    async def event_generator() -> AsyncIterator[dict[str, str]]:
        try:
            while not await request.is_disconnected():
                try:
                    message = await asyncio.wait_for(
                        subscriber.next_message(),
                        timeout=STREAM_POLL_SECONDS,
                    )
                except TimeoutError:
                    continue
                yield {"event": message["event"], "data": json.dumps(message["data"])}
        finally:
            hub.disconnect(subscriber)
            logger.info(
                "realtime.sse.disconnected",
                extra={"project_id": str(project_id), "user_id": str(user_id)},
            )

    return EventSourceResponse(event_generator(), ping=15)
