# ruff: noqa: INP001
"""Project membership guard tests."""

from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from worknest.models.projects import Project, ProjectMember
from worknest.models.tasks import Task, TaskAttachment
from worknest.models.users import User
from worknest.services.board_access import (
    BoardAccessDenied,
    authorize,
    can_comment,
    can_delete_attachment,
    can_delete_project,
    can_delete_task,
    can_upload,
    role_allows,
)


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


@pytest.mark.parametrize(
    ("role", "read", "write", "admin"),
    [
        ("viewer", True, False, False),
        ("member", True, True, False),
        ("admin", True, True, True),
        ("owner", True, True, True),
        ("stranger", False, False, False),
        (None, False, False, False),
    ],
)
def test_role_levels(role: str | None, read: bool, write: bool, admin: bool) -> None:
    assert role_allows(role, "read") is read
    assert role_allows(role, "write") is write
    assert role_allows(role, "admin") is admin


@pytest.mark.asyncio
async def test_authorize_requires_membership_with_enough_role() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        owner = User(clerk_user_id="owner")
        viewer = User(clerk_user_id="viewer")
        outsider = User(clerk_user_id="outsider")
        project = Project(title="Board", owner_id=owner.id)
        session.add_all([owner, viewer, outsider, project])
        session.add(ProjectMember(project_id=project.id, user_id=owner.id, role="owner"))
        session.add(ProjectMember(project_id=project.id, user_id=viewer.id, role="viewer"))
        await session.commit()

        member = await authorize(session, user=owner, project=project, level="admin")
        assert member.role == "owner"
        assert (await authorize(session, user=viewer, project=project, level="read")).role == "viewer"

        with pytest.raises(BoardAccessDenied, match="does not allow write"):
            await authorize(session, user=viewer, project=project, level="write")
        with pytest.raises(BoardAccessDenied, match="Not a member"):
            await authorize(session, user=outsider, project=project, level="read")
    await engine.dispose()


@pytest.mark.parametrize(
    ("role", "allow_comments", "expected"),
    [
        ("viewer", True, False),
        ("member", True, True),
        ("member", False, False),
        ("admin", False, True),
        ("owner", False, True),
    ],
)
def test_comment_and_upload_toggles(role: str, allow_comments: bool, expected: bool) -> None:
    project = Project(
        title="Board",
        owner_id=uuid4(),
        allow_comments=allow_comments,
        allow_file_uploads=allow_comments,
    )
    member = ProjectMember(project_id=project.id, user_id=uuid4(), role=role)

    assert can_comment(project, member) is expected
    assert can_upload(project, member) is expected


@pytest.mark.parametrize(
    ("role", "expected"),
    [("viewer", False), ("member", False), ("admin", True), ("owner", True)],
)
def test_only_admins_delete_tasks(role: str, expected: bool) -> None:
    member = ProjectMember(project_id=uuid4(), user_id=uuid4(), role=role)
    assert can_delete_task(member) is expected


def test_only_the_owning_owner_deletes_the_project() -> None:
    owner_id = uuid4()
    project = Project(title="Board", owner_id=owner_id)

    assert can_delete_project(project, ProjectMember(project_id=project.id, user_id=owner_id, role="owner"))
    for role in ("admin", "member", "viewer"):
        member = ProjectMember(project_id=project.id, user_id=owner_id, role=role)
        assert not can_delete_project(project, member)
    co_owner = ProjectMember(project_id=project.id, user_id=uuid4(), role="owner")
    assert not can_delete_project(project, co_owner)


def test_attachment_removal_allowed_for_uploader_assignee_and_admin() -> None:
    project_id = uuid4()
    uploader_id = uuid4()
    assignee_id = uuid4()
    task = Task(display_id="AT-1", title="Card", project_id=project_id, assignee_id=assignee_id)
    attachment = TaskAttachment(
        task_id=task.id,
        filename="f.pdf",
        original_name="f.pdf",
        url="/uploads/f.pdf",
        storage_key="f.pdf",
        size=10,
        mime_type="application/pdf",
        uploaded_by_id=uploader_id,
    )

    def _member(user_id: object, role: str = "member") -> ProjectMember:
        return ProjectMember(project_id=project_id, user_id=user_id, role=role)

    assert can_delete_attachment(_member(uploader_id), task, attachment)
    assert can_delete_attachment(_member(assignee_id), task, attachment)
    assert can_delete_attachment(_member(uuid4(), "admin"), task, attachment)
    assert not can_delete_attachment(_member(uuid4()), task, attachment)
    assert not can_delete_attachment(_member(uuid4(), "viewer"), task, attachment)
