"""Queue envelopes for outbound project webhook deliveries."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.services.queue import QueuedTask, enqueue_task
from worknest.services.queue import requeue_if_failed as generic_requeue_if_failed

logger = get_logger(__name__)
TASK_TYPE = "project_webhook_delivery"


@dataclass(frozen=True)
class QueuedWebhookDelivery:
    """One event destined for one webhook subscription."""

    project_id: UUID
    webhook_id: UUID
    event: str
    data: dict[str, Any]
    emitted_at: datetime
    attempts: int = 0


def _task_from_delivery(delivery: QueuedWebhookDelivery) -> QueuedTask:
    return QueuedTask(
        task_type=TASK_TYPE,
        payload={
            "project_id": str(delivery.project_id),
            "webhook_id": str(delivery.webhook_id),
            "event": delivery.event,
            "data": delivery.data,
            "emitted_at": delivery.emitted_at.isoformat(),
        },
        created_at=delivery.emitted_at,
        attempts=delivery.attempts,
    )


def decode_webhook_task(task: QueuedTask) -> QueuedWebhookDelivery:
    if task.task_type != TASK_TYPE:
        raise ValueError(f"Unexpected task_type={task.task_type!r}; expected {TASK_TYPE!r}")
    payload = task.payload
    return QueuedWebhookDelivery(
        project_id=UUID(payload["project_id"]),
        webhook_id=UUID(payload["webhook_id"]),
        event=str(payload["event"]),
        data=dict(payload.get("data") or {}),
        emitted_at=datetime.fromisoformat(payload["emitted_at"]),
        attempts=task.attempts,
    )


def new_delivery(
    *,
    project_id: UUID,
    webhook_id: UUID,
    event: str,
    data: dict[str, Any],
) -> QueuedWebhookDelivery:
    return QueuedWebhookDelivery(
        project_id=project_id,
        webhook_id=webhook_id,
        event=event,
        data=data,
        emitted_at=datetime.now(UTC),
    )


def enqueue_webhook_delivery(delivery: QueuedWebhookDelivery) -> bool:
    """Queue a delivery for the background worker; False when Redis refused it."""
    queued = enqueue_task(
        _task_from_delivery(delivery),
        settings.rq_queue_name,
        redis_url=settings.redis_url,
    )
    if queued:
        logger.info(
            "webhook.queue.enqueued",
            extra={
                "project_id": str(delivery.project_id),
                "webhook_id": str(delivery.webhook_id),
                "event": delivery.event,
            },
        )
    return queued


def requeue_webhook_queue_task(task: QueuedTask, *, delay_seconds: float = 0) -> bool:
    """Retry a failed delivery later, up to `rq_dispatch_max_retries` times."""
    return generic_requeue_if_failed(
        _task_from_delivery(decode_webhook_task(task)),
        settings.rq_queue_name,
        max_retries=settings.rq_dispatch_max_retries,
        redis_url=settings.redis_url,
        delay_seconds=delay_seconds,
    )
