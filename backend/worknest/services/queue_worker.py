"""Background worker that drains the Redis queue and dispatches by task type."""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from redis.exceptions import RedisError

from worknest.core.config import settings
from worknest.core.logging import configure_logging, get_logger
from worknest.services.integrations.dispatch import process_webhook_queue_task
from worknest.services.integrations.queue import TASK_TYPE as WEBHOOK_TASK_TYPE
from worknest.services.integrations.queue import requeue_webhook_queue_task
from worknest.services.queue import QueuedTask, dequeue_task
from worknest.services.reminders import TASK_TYPE as REMINDER_TASK_TYPE
from worknest.services.reminders import (
    bootstrap_reminder_schedule,
    process_reminder_queue_task,
    requeue_reminder_queue_task,
)

logger = get_logger(__name__)
_WORKER_BLOCK_TIMEOUT_SECONDS = 5.0


def _backoff_seconds(attempts: int) -> float:
    return min(
        settings.rq_dispatch_retry_base_seconds * (2 ** max(0, attempts)),
        settings.rq_dispatch_retry_max_seconds,
    )


@dataclass(frozen=True)
class _TaskHandler:
    handler: Callable[[QueuedTask], Awaitable[None]]
    requeue: Callable[[QueuedTask, float], bool]
    attempts_to_delay: Callable[[int], float] = _backoff_seconds


_TASK_HANDLERS: dict[str, _TaskHandler] = {
    WEBHOOK_TASK_TYPE: _TaskHandler(
        handler=process_webhook_queue_task,
        requeue=lambda task, delay: requeue_webhook_queue_task(task, delay_seconds=delay),
    ),
    REMINDER_TASK_TYPE: _TaskHandler(
        handler=process_reminder_queue_task,
        requeue=requeue_reminder_queue_task,
    ),
}


def _compute_jitter(base_delay: float) -> float:
    return random.uniform(0, min(settings.rq_dispatch_retry_max_seconds / 10, base_delay * 0.1))


async def _run_task(task: QueuedTask) -> bool:
    """Dispatch one task; on failure schedule a retry. Returns True on success."""
    handler = _TASK_HANDLERS.get(task.task_type)
    if handler is None:
        logger.warning("queue.worker.task_unhandled", extra={"task_type": task.task_type})
        return False
    try:
        await handler.handler(task)
    except Exception as exc:
        logger.exception(
            "queue.worker.failed",
            extra={"task_type": task.task_type, "attempt": task.attempts, "error": str(exc)},
        )
        base_delay = handler.attempts_to_delay(task.attempts)
        if not handler.requeue(task, base_delay + _compute_jitter(base_delay)):
            logger.warning(
                "queue.worker.drop_task",
                extra={"task_type": task.task_type, "attempt": task.attempts},
            )
        return False
    logger.info("queue.worker.success", extra={"task_type": task.task_type, "attempt": task.attempts})
    return True


async def flush_queue(*, block: bool = False, block_timeout: float = 0) -> int:
    """Process queued tasks until the queue is empty; returns the success count."""
    processed = 0
    while True:
        try:
            task = dequeue_task(
                settings.rq_queue_name,
                redis_url=settings.redis_url,
                block=block,
                block_timeout=block_timeout,
            )
        except (ValueError, KeyError, TypeError):
            # The malformed envelope is already popped; keep draining.
            logger.exception("queue.worker.dequeue_failed", extra={"queue_name": settings.rq_queue_name})
            continue
        if task is None:
            break
        if await _run_task(task):
            processed += 1
        await asyncio.sleep(settings.rq_dispatch_throttle_seconds)
    if processed:
        logger.info("queue.worker.batch_complete", extra={"count": processed})
    return processed


async def _run_worker_loop() -> None:
    while True:
        try:
            # A finite timeout lets delayed retries get promoted between polls.
            await flush_queue(block=True, block_timeout=_WORKER_BLOCK_TIMEOUT_SECONDS)
        except Exception:
            logger.exception("queue.worker.loop_failed", extra={"queue_name": settings.rq_queue_name})
            await asyncio.sleep(1)


def run_worker() -> None:
    """Console entrypoint: run the queue worker until interrupted."""
    configure_logging()
    logger.info("queue.worker.started", extra={"queue_name": settings.rq_queue_name})
    try:
        bootstrap_reminder_schedule()
    except RedisError as exc:
        logger.warning("reminders.schedule.unavailable", extra={"error": str(exc)})
    try:
        asyncio.run(_run_worker_loop())
    finally:
        logger.info("queue.worker.stopped", extra={"queue_name": settings.rq_queue_name})
