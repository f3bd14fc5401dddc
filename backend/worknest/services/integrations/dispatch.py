"""Fan project events out to webhook subscriptions and deliver them."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import TYPE_CHECKING, Any
from uuid import UUID

import httpx
from sqlmodel import col

from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.core.time import utcnow
from worknest.db.session import async_session_maker
from worknest.models.project_webhooks import ProjectWebhook
from worknest.services.integrations.queue import (
    decode_webhook_task,
    enqueue_webhook_delivery,
    new_delivery,
)

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

    from worknest.services.queue import QueuedTask

logger = get_logger(__name__)
SIGNATURE_HEADER = "X-WorkNest-Signature"
EVENT_HEADER = "X-WorkNest-Event"
USER_AGENT = "WorkNest Webhook Service"


class WebhookDeliveryError(Exception):
    """Raised when the receiving endpoint rejects or cannot be reached."""


def sign_body(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _slack_text(event: str, data: dict[str, Any]) -> str:
    task = data.get("task") if isinstance(data.get("task"), dict) else None
    if task is not None:
        label = f"{task.get('display_id', '')} {task.get('title', '')}".strip()
        if event == "task.status_changed":
            return f"*{label}* moved to *{task.get('status')}*"
        return f"*{label}*: {event.replace('.', ' ')}"
    return f"WorkNest event: {event}"


def build_request_body(webhook: ProjectWebhook, event: str, data: dict[str, Any]) -> bytes:
    """Serialize the delivery body in the shape the integration type expects."""
    if webhook.integration_type == "slack":
        payload: dict[str, Any] = {"text": _slack_text(event, data)}
    else:
        payload = {
            "event": event,
            "project_id": str(webhook.project_id),
            "timestamp": utcnow().isoformat(),
            "data": data,
        }
    return json.dumps(payload, default=str, separators=(",", ":")).encode("utf-8")


def build_headers(webhook: ProjectWebhook, event: str, body: bytes) -> dict[str, str]:
    headers = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
        EVENT_HEADER: event,
        **(webhook.headers or {}),
    }
    if webhook.secret:
        headers[SIGNATURE_HEADER] = sign_body(webhook.secret, body)
    return headers


async def deliver_webhook(
    session: AsyncSession,
    webhook: ProjectWebhook,
    event: str,
    data: dict[str, Any],
    *,
    client: httpx.AsyncClient | None = None,
) -> int:
    """POST one event to the webhook URL and record the outcome on the row.

    Returns the response status; raises `WebhookDeliveryError` for transport
    failures and non-2xx responses so the worker can retry.
    """
    body = build_request_body(webhook, event, data)
    headers = build_headers(webhook, event, body)
    status_code = 0
    error: Exception | None = None
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=settings.webhook_timeout_seconds) as owned:
                response = await owned.post(webhook.url, content=body, headers=headers)
        else:
            response = await client.post(
                webhook.url,
                content=body,
                headers=headers,
                timeout=settings.webhook_timeout_seconds,
            )
        status_code = response.status_code
        if not response.is_success:
            error = WebhookDeliveryError(f"webhook responded with HTTP {status_code}")
    except httpx.HTTPError as exc:
        error = WebhookDeliveryError(str(exc) or exc.__class__.__name__)

    webhook.last_status = status_code
    webhook.last_triggered_at = utcnow()
    session.add(webhook)
    await session.commit()
    log_extra = {
        "webhook_id": str(webhook.id),
        "project_id": str(webhook.project_id),
        "event": event,
        "status_code": status_code,
    }
    if error is not None:
        logger.warning("webhook.delivery.failed", extra={**log_extra, "error": str(error)})
        raise error
    logger.info("webhook.delivery.success", extra=log_extra)
    return status_code


async def emit_project_event(
    session: AsyncSession,
    project_id: UUID,
    event: str,
    data: dict[str, Any],
) -> int:
    """Queue one delivery per active webhook subscribed to `event`."""
    webhooks = await ProjectWebhook.objects.filter(
        col(ProjectWebhook.project_id) == project_id,
        col(ProjectWebhook.active).is_(True),
    ).all(session)
    queued = 0
    for webhook in webhooks:
        if event not in (webhook.events or []):
            continue
        delivery = new_delivery(
            project_id=project_id,
            webhook_id=webhook.id,
            event=event,
            data=data,
        )
        if enqueue_webhook_delivery(delivery):
            queued += 1
    return queued


async def process_webhook_queue_task(task: QueuedTask) -> None:
    """Worker handler: load the subscription and deliver the queued event."""
    delivery = decode_webhook_task(task)
    async with async_session_maker() as session:
        webhook = await ProjectWebhook.objects.by_id(delivery.webhook_id).first(session)
        if webhook is None or webhook.project_id != delivery.project_id:
            logger.warning(
                "webhook.queue.webhook_missing",
                extra={"webhook_id": str(delivery.webhook_id)},
            )
            return
        if not webhook.active:
            logger.info("webhook.queue.inactive", extra={"webhook_id": str(webhook.id)})
            return
        await deliver_webhook(session, webhook, delivery.event, delivery.data)
