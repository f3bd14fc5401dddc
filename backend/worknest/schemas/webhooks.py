"""Schemas for project webhook subscriptions."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Self
from uuid import UUID

from pydantic import Field, field_validator
from sqlmodel import SQLModel

from worknest.models.project_webhooks import WEBHOOK_EVENTS
from worknest.schemas.common import NonEmptyStr

RUNTIME_ANNOTATION_TYPES = (datetime, UUID, NonEmptyStr)

IntegrationType = Literal["custom", "slack", "github"]


class ProjectWebhookCreate(SQLModel):
    """Payload for subscribing a URL to project events."""

    name: NonEmptyStr
    url: NonEmptyStr
    events: list[str] = Field(min_length=1)
    integration_type: IntegrationType = "custom"
    secret: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    active: bool = True

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.lower().startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value

    @field_validator("events")
    @classmethod
    def _known_events(cls, value: list[str]) -> list[str]:
        unknown = sorted(set(value) - set(WEBHOOK_EVENTS))
        if unknown:
            raise ValueError(f"unknown events: {', '.join(unknown)}")
        return sorted(set(value))


class ProjectWebhookRead(SQLModel):
    """Webhook subscription as returned to clients; the secret is never echoed."""

    id: UUID
    project_id: UUID
    name: str
    url: str
    events: list[str]
    integration_type: str
    active: bool
    has_secret: bool
    last_triggered_at: datetime | None = None
    last_status: int | None = None
    created_at: datetime

    @classmethod
    def from_model(cls, webhook: object) -> Self:
        data = {name: getattr(webhook, name) for name in cls.model_fields if name != "has_secret"}
        return cls(**data, has_secret=bool(getattr(webhook, "secret", None)))


class WebhookTestResponse(SQLModel):
    ok: bool
    status_code: int
