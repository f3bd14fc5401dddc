"""Project webhook subscription endpoints (owners and admins only)."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from sqlmodel import col

from worknest.api.deps import PROJECT_ADMIN_DEP, SESSION_DEP, ProjectAccess
from worknest.core.logging import get_logger
from worknest.models.project_webhooks import ProjectWebhook
from worknest.schemas.common import OkResponse
from worknest.schemas.webhooks import ProjectWebhookCreate, ProjectWebhookRead, WebhookTestResponse
from worknest.services.integrations.dispatch import WebhookDeliveryError, deliver_webhook
from worknest.services.realtime import stamp

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

router = APIRouter(prefix="/projects/{project_id}/webhooks", tags=["webhooks"])
logger = get_logger(__name__)
TEST_EVENT = "webhook.test"


async def _webhook_or_404(session: AsyncSession, project_id: UUID, webhook_id: UUID) -> ProjectWebhook:
    webhook = await ProjectWebhook.objects.by_id(webhook_id).first(session)
    if webhook is None or webhook.project_id != project_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook not found")
    return webhook


@router.post("", response_model=ProjectWebhookRead, status_code=status.HTTP_201_CREATED)
async def create_project_webhook(
    payload: ProjectWebhookCreate,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> ProjectWebhookRead:
    webhook = ProjectWebhook(
        project_id=access.project.id,
        name=payload.name,
        url=payload.url,
        secret=payload.secret or None,
        events=list(payload.events),
        integration_type=payload.integration_type,
        headers=dict(payload.headers),
        active=payload.active,
        created_by_id=access.user.id,
    )
    session.add(webhook)
    await session.commit()
    await session.refresh(webhook)
    logger.info(
        "webhook.created",
        extra={"webhook_id": str(webhook.id), "project_id": str(webhook.project_id)},
    )
    return ProjectWebhookRead.from_model(webhook)


@router.get("", response_model=list[ProjectWebhookRead])
async def list_project_webhooks(
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> list[ProjectWebhookRead]:
    webhooks = await ProjectWebhook.objects.filter_by(project_id=access.project.id).order_by(
        col(ProjectWebhook.created_at),
    ).all(session)
    return [ProjectWebhookRead.from_model(webhook) for webhook in webhooks]


@router.delete("/{webhook_id}", response_model=OkResponse)
async def delete_project_webhook(
    webhook_id: UUID,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> OkResponse:
    webhook = await _webhook_or_404(session, access.project.id, webhook_id)
    await session.delete(webhook)
    await session.commit()
    logger.info("webhook.deleted", extra={"webhook_id": str(webhook_id)})
    return OkResponse()


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_project_webhook(
    webhook_id: UUID,
    access: ProjectAccess = PROJECT_ADMIN_DEP,
    session: AsyncSession = SESSION_DEP,
) -> WebhookTestResponse:
    """Send a synchronous test delivery and report the receiver's status."""
    webhook = await _webhook_or_404(session, access.project.id, webhook_id)
    data = stamp({"project_id": str(access.project.id), "message": "Test delivery"})
    try:
        status_code = await deliver_webhook(session, webhook, TEST_EVENT, data)
    except WebhookDeliveryError:
        return WebhookTestResponse(ok=False, status_code=webhook.last_status or 0)
    return WebhookTestResponse(ok=True, status_code=status_code)
