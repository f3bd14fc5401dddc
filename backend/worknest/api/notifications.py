"""In-app notification endpoints for the current user."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import func, update
from sqlmodel import col, select

from worknest.api.deps import SESSION_DEP, USER_DEP
from worknest.core.time import utcnow
from worknest.models.notifications import Notification
from worknest.schemas.notifications import MarkAllReadResponse, NotificationList, NotificationRead

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.models.users import User

router = APIRouter(prefix="/notifications", tags=["notifications"])
UNREAD_QUERY = Query(default=False)
LIMIT_QUERY = Query(default=50, ge=1, le=200)
OFFSET_QUERY = Query(default=0, ge=0)


async def _unread_count(session: AsyncSession, user_id: UUID) -> int:
    statement = select(func.count()).where(
        col(Notification.recipient_id) == user_id,
        col(Notification.read).is_(False),
    )
    return int((await session.exec(statement)).one())


@router.get("", response_model=NotificationList)
async def list_notifications(
    unread: bool = UNREAD_QUERY,
    limit: int = LIMIT_QUERY,
    offset: int = OFFSET_QUERY,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> NotificationList:
    """List the caller's notifications, newest first."""
    statement = select(Notification).where(col(Notification.recipient_id) == user.id)
    if unread:
        statement = statement.where(col(Notification.read).is_(False))
    statement = statement.order_by(col(Notification.created_at).desc()).offset(offset).limit(limit)
    rows = (await session.exec(statement)).all()
    return NotificationList(
        items=[NotificationRead.model_validate(row) for row in rows],
        unread_count=await _unread_count(session, user.id),
    )


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_read(
    notification_id: UUID,
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> NotificationRead:
    notification = await Notification.objects.by_id(notification_id).first(session)
    if notification is None or notification.recipient_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    if not notification.read:
        notification.read = True
        notification.read_at = utcnow()
        session.add(notification)
        await session.commit()
        await session.refresh(notification)
    return NotificationRead.model_validate(notification)


@router.post("/read-all", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    session: AsyncSession = SESSION_DEP,
    user: User = USER_DEP,
) -> MarkAllReadResponse:
    result = await session.exec(  # type: ignore[call-overload]
        update(Notification)
        .where(col(Notification.recipient_id) == user.id, col(Notification.read).is_(False))
        .values(read=True, read_at=utcnow()),
    )
    await session.commit()
    return MarkAllReadResponse(updated=int(result.rowcount or 0))
