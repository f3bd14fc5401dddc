# ruff: noqa: INP001
"""Status transition and dependency gate tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from worknest.models.projects import Project, default_columns
from worknest.models.task_dependencies import TaskDependency
from worknest.models.tasks import Task
from worknest.services.task_state import (
    BlockedTransitionError,
    build_board_columns,
    completion_time,
    ensure_transition_allowed,
    rebuild_board_columns,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


def _task(project_id: object, title: str, status: str = "todo") -> Task:
    return Task(display_id=f"TS-{uuid4().hex[:6]}", title=title, project_id=project_id, status=status)


@pytest.mark.parametrize(
    ("previous", "new", "completed_at", "expected"),
    [
        ("todo", "done", None, NOW),
        ("inprogress", "done", None, NOW),
        ("done", "done", NOW - timedelta(days=2), NOW - timedelta(days=2)),
        ("done", "todo", NOW - timedelta(days=2), None),
        ("done", "inprogress", NOW, None),
        ("todo", "inprogress", None, None),
    ],
)
def test_completion_time_tracks_done_status(
    previous: str,
    new: str,
    completed_at: datetime | None,
    expected: datetime | None,
) -> None:
    assert completion_time(previous, new, completed_at, NOW) == expected


@pytest.mark.asyncio
async def test_done_is_refused_while_blocking_dependency_is_open() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    project_id = uuid4()
    async with session_maker() as session:
        task = _task(project_id, "Ship release")
        design = _task(project_id, "Finish design")
        review = _task(project_id, "Security review", status="inprogress")
        related = _task(project_id, "Write blog post")
        session.add_all([task, design, review, related])
        session.add(TaskDependency(task_id=task.id, depends_on_task_id=design.id))
        session.add(
            TaskDependency(
                task_id=task.id,
                depends_on_task_id=review.id,
                created_at=datetime(2099, 1, 1),
            ),
        )
        session.add(
            TaskDependency(task_id=task.id, depends_on_task_id=related.id, dependency_type="related"),
        )
        await session.commit()

        with pytest.raises(BlockedTransitionError) as exc_info:
            await ensure_transition_allowed(session, task, "done")

        detail = exc_info.value.to_detail()
        assert detail["code"] == "task_blocked"
        assert detail["blocking_tasks"] == ["Finish design", "Security review"]
        assert detail["blocked_by_task_ids"] == [str(design.id), str(review.id)]

        # Non-done transitions are never gated.
        await ensure_transition_allowed(session, task, "inprogress")

        design.status = "done"
        review.status = "done"
        session.add_all([design, review])
        await session.commit()
        await ensure_transition_allowed(session, task, "done")
    await engine.dispose()


@pytest.mark.asyncio
async def test_task_already_done_can_move_back_and_stay_done() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    project_id = uuid4()
    async with session_maker() as session:
        task = _task(project_id, "Closed early", status="done")
        blocker = _task(project_id, "Still open")
        session.add_all([task, blocker])
        session.add(TaskDependency(task_id=task.id, depends_on_task_id=blocker.id))
        await session.commit()

        await ensure_transition_allowed(session, task, "done")
        await ensure_transition_allowed(session, task, "todo")
    await engine.dispose()


def test_build_board_columns_groups_task_ids_by_status() -> None:
    first, second, third = uuid4(), uuid4(), uuid4()

    columns = build_board_columns(
        default_columns(),
        [(first, "todo"), (second, "done"), (third, "todo")],
    )

    by_id = {column["id"]: column["task_ids"] for column in columns}
    assert by_id == {"todo": [str(first), str(third)], "inprogress": [], "done": [str(second)]}
    assert [column["title"] for column in columns] == [
        column["title"] for column in default_columns()
    ]


def test_build_board_columns_leaves_custom_columns_without_status_match_empty() -> None:
    custom = [{"id": "backlog", "title": "Backlog", "task_ids": ["stale"]}]

    assert build_board_columns(custom, [(uuid4(), "todo")]) == [
        {"id": "backlog", "title": "Backlog", "task_ids": []},
    ]
    assert build_board_columns(None, [(uuid4(), "todo")]) == []


@pytest.mark.asyncio
async def test_rebuild_board_columns_follows_task_status() -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        project = Project(title="Board", owner_id=uuid4())
        session.add(project)
        await session.commit()
        task = _task(project.id, "Card")
        session.add(task)
        await session.commit()

        assert await rebuild_board_columns(session, project.id) is True
        assert await rebuild_board_columns(session, project.id) is False

        task.status = "done"
        session.add(task)
        await session.commit()
        assert await rebuild_board_columns(session, project.id) is True

    async with session_maker() as session:
        stored = await Project.objects.by_id(project.id).first(session)
        assert stored is not None
        by_id = {column["id"]: column["task_ids"] for column in stored.columns}
        assert by_id == {"todo": [], "inprogress": [], "done": [str(task.id)]}

        assert await rebuild_board_columns(session, uuid4()) is False
    await engine.dispose()
