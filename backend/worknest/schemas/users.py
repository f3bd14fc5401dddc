"""User read schema."""

from __future__ import annotations

from uuid import UUID

from sqlmodel import SQLModel

RUNTIME_ANNOTATION_TYPES = (UUID,)


class UserRead(SQLModel):
    """Public user profile."""

    id: UUID
    clerk_user_id: str
    email: str | None = None
    name: str | None = None
