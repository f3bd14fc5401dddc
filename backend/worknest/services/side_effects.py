"""Helpers for secondary effects that must not fail the primary operation.

Board columns, notifications, activity entries and webhook fan-out run after
the task write has committed. Their failures are logged and the session is
rolled back so the request can still return the committed result.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from worknest.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlmodel.ext.asyncio.session import AsyncSession

logger = get_logger(__name__)


@asynccontextmanager
async def best_effort(
    name: str,
    *,
    session: AsyncSession | None = None,
    **context: Any,
) -> AsyncIterator[None]:
    """Run the block, logging (not raising) any exception it produces."""
    try:
        yield
    except Exception as exc:
        logger.warning(
            "side_effect.failed",
            exc_info=True,
            extra={
                "side_effect": name,
                "error_type": exc.__class__.__name__,
                **{key: str(value) for key, value in context.items()},
            },
        )
        if session is not None:
            try:
                await session.rollback()
            except SQLAlchemyError:
                logger.exception("side_effect.rollback_failed", extra={"side_effect": name})


def detached(row: Any) -> Any:
    """Copy a row into a transient instance that stays readable after a rollback."""
    return type(row).model_validate(row.model_dump())
