"""Notification read schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field
from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (datetime, UUID)


class NotificationRead(SQLModel):
    id: UUID
    recipient_id: UUID
    sender_id: UUID | None = None
    type: str
    title: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict)
    read: bool
    read_at: datetime | None = None
    created_at: datetime


class NotificationList(SQLModel):
    items: list[NotificationRead]
    unread_count: int


class MarkAllReadResponse(SQLModel):
    updated: int
