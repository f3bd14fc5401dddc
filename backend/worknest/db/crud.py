"""Small persistence helpers shared by services."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlmodel import SQLModel

if TYPE_CHECKING:
    from collections.abc import Mapping

    from sqlmodel.ext.asyncio.session import AsyncSession

ModelT = TypeVar("ModelT", bound=SQLModel)


async def get_or_create(
    session: AsyncSession,
    model: type[ModelT],
    *,
    defaults: Mapping[str, Any] | None = None,
    **lookup: Any,
) -> tuple[ModelT, bool]:
    """Return the row matching `lookup`, inserting it (with `defaults`) when absent."""
    statement = model.objects.filter_by(**lookup)  # type: ignore[attr-defined]
    existing = await statement.first(session)
    if existing is not None:
        return existing, False
    obj = model(**lookup, **dict(defaults or {}))
    session.add(obj)
    try:
        await session.commit()
    except IntegrityError:
        # Lost a race with a concurrent insert of the same unique key.
        await session.rollback()
        existing = await statement.first(session)
        if existing is None:
            raise
        return existing, False
    await session.refresh(obj)
    return obj, True


def patch(obj: ModelT, updates: Mapping[str, Any]) -> ModelT:
    """Apply a mapping of already-validated field updates onto a model instance."""
    for key, value in updates.items():
        setattr(obj, key, value)
    return obj


async def delete_where(
    session: AsyncSession,
    model: type[SQLModel],
    *criteria: Any,
    commit: bool = False,
) -> None:
    """Bulk delete rows of `model` matching the given criteria."""
    await session.exec(delete(model).where(*criteria))  # type: ignore[call-overload]
    if commit:
        await session.commit()
