"""Human-readable task display ids (`AB-1`, `AB-2`, ...) allocated per prefix.

Numbers come from the `task_counters` row for the prefix, bumped with one
atomic upsert so concurrent creators never observe the same value. A counter
row that is created fresh is reconciled against display ids already present in
`tasks`, which covers databases that predate the counter table.
"""

from __future__ import annotations

import re
import time
from typing import TYPE_CHECKING

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import col, select

from worknest.core.logging import get_logger
from worknest.core.time import utcnow
from worknest.models.task_counters import TaskCounter
from worknest.models.tasks import Task
from worknest.models.workspaces import Workspace

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.projects import Project

logger = get_logger(__name__)
PREFIX_PATTERN = re.compile(r"^[A-Z]{2}$")
FALLBACK_PREFIX = "WN"


def derive_prefix(name: str) -> str:
    """Return the two-letter upper-case prefix for a workspace or project name."""
    prefix = (name or "").strip()[:2].upper()
    if not PREFIX_PATTERN.match(prefix):
        raise ValueError(f"cannot derive a display-id prefix from {name!r}")
    return prefix


def fallback_display_id() -> str:
    """Display id used when no prefix can be derived; unique per millisecond."""
    return f"{FALLBACK_PREFIX}-{int(time.time() * 1000)}"


def _upsert_statement(dialect_name: str, prefix: str):  # noqa: ANN202
    insert = pg_insert if dialect_name == "postgresql" else sqlite_insert
    now = utcnow()
    statement = insert(TaskCounter).values(prefix=prefix, last_value=1, updated_at=now)
    return statement.on_conflict_do_update(
        index_elements=["prefix"],
        set_={"last_value": TaskCounter.last_value + 1, "updated_at": now},
    ).returning(col(TaskCounter.last_value))


async def _max_existing_number(session: AsyncSession, prefix: str) -> int | None:
    pattern = re.compile(rf"^{re.escape(prefix)}-(\d+)$")
    rows = await session.exec(
        select(Task.display_id).where(col(Task.display_id).like(f"{prefix}-%")),
    )
    numbers = [int(match.group(1)) for value in rows if (match := pattern.match(value))]
    return max(numbers) if numbers else None


async def allocate_display_id(session: AsyncSession, prefix: str) -> str:
    """Atomically reserve the next display id for `prefix` and commit it."""
    dialect_name = session.get_bind().dialect.name
    result = await session.exec(_upsert_statement(dialect_name, prefix))  # type: ignore[call-overload]
    value = int(result.scalar_one())
    if value == 1:
        existing = await _max_existing_number(session, prefix)
        if existing is not None:
            value = existing + 1
            await session.exec(  # type: ignore[call-overload]
                update(TaskCounter)
                .where(col(TaskCounter.prefix) == prefix)
                .values(last_value=value, updated_at=utcnow()),
            )
            logger.info(
                "task_ids.counter.reconciled",
                extra={"prefix": prefix, "last_value": value},
            )
    await session.commit()
    return f"{prefix}-{value}"


async def allocate_display_id_for_project(session: AsyncSession, project: Project) -> str:
    """Allocate a display id using the project's workspace name, else its title."""
    name = project.title
    try:
        if project.workspace_id is not None:
            workspace = await Workspace.objects.by_id(project.workspace_id).first(session)
            if workspace is not None:
                name = workspace.name
        prefix = derive_prefix(name)
    except ValueError:
        display_id = fallback_display_id()
        logger.warning(
            "task_ids.prefix.fallback",
            extra={"project_id": str(project.id), "display_id": display_id},
        )
        return display_id
    return await allocate_display_id(session, prefix)
