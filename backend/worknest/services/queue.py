"""Redis list queue shared by background workloads (webhooks, reminders).

Ready tasks live in a list (`LPUSH` in, `RPOP`/`BRPOP` out). Delayed tasks sit
in a companion sorted set scored by their due time and are moved onto the list
whenever a consumer polls.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, cast

import redis

from worknest.core.config import settings
from worknest.core.logging import get_logger

logger = get_logger(__name__)

_SCHEDULED_SUFFIX = ":scheduled"
_DRAIN_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueuedTask:
    """Envelope for one unit of background work."""

    task_type: str
    payload: dict[str, Any]
    created_at: datetime
    attempts: int = 0

    def to_json(self) -> str:
        return json.dumps(
            {
                "task_type": self.task_type,
                "payload": self.payload,
                "created_at": self.created_at.isoformat(),
                "attempts": self.attempts,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> QueuedTask:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        data = json.loads(text)
        return cls(
            task_type=str(data["task_type"]),
            payload=dict(data.get("payload") or {}),
            created_at=datetime.fromisoformat(data["created_at"]),
            attempts=int(data.get("attempts", 0)),
        )


def new_task(task_type: str, payload: dict[str, Any]) -> QueuedTask:
    """Build a first-attempt envelope stamped with the current time."""
    return QueuedTask(task_type=task_type, payload=payload, created_at=datetime.now(UTC))


def _redis_client(redis_url: str | None = None) -> redis.Redis:
    return redis.Redis.from_url(redis_url or settings.redis_url)


def _scheduled_key(queue_name: str) -> str:
    return f"{queue_name}{_SCHEDULED_SUFFIX}"


def _now_seconds() -> float:
    return time.time()


def _promote_due_tasks(client: redis.Redis, queue_name: str) -> float | None:
    """Move due delayed tasks onto the ready list; return seconds until the next one."""
    scheduled = _scheduled_key(queue_name)
    now = _now_seconds()
    due = cast(
        list[str | bytes],
        client.zrangebyscore(scheduled, "-inf", now, start=0, num=_DRAIN_BATCH_SIZE),
    )
    if due:
        client.lpush(queue_name, *due)
        client.zrem(scheduled, *due)
        logger.debug("queue.scheduled.promoted", extra={"queue_name": queue_name, "count": len(due)})

    upcoming = cast(
        list[tuple[str | bytes, float]],
        client.zrangebyscore(scheduled, now, "+inf", start=0, num=1, withscores=True),
    )
    if not upcoming:
        return None
    return max(0.0, float(upcoming[0][1]) - now)


def enqueue_task(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    redis_url: str | None = None,
) -> bool:
    """Push a task onto the ready list; returns False (and logs) when Redis is unavailable."""
    queue_name = queue_name or settings.rq_queue_name
    try:
        _redis_client(redis_url=redis_url).lpush(queue_name, task.to_json())
    except redis.RedisError as exc:
        logger.warning(
            "queue.enqueue_failed",
            extra={"task_type": task.task_type, "queue_name": queue_name, "error": str(exc)},
        )
        return False
    logger.info(
        "queue.enqueued",
        extra={"task_type": task.task_type, "queue_name": queue_name, "attempt": task.attempts},
    )
    return True


def enqueue_task_with_delay(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    delay_seconds: float,
    redis_url: str | None = None,
) -> bool:
    """Enqueue now when `delay_seconds` is zero, otherwise park the task until it is due."""
    queue_name = queue_name or settings.rq_queue_name
    delay = max(0.0, float(delay_seconds))
    if delay == 0:
        return enqueue_task(task, queue_name, redis_url=redis_url)
    try:
        _redis_client(redis_url=redis_url).zadd(
            _scheduled_key(queue_name),
            {task.to_json(): _now_seconds() + delay},
        )
    except redis.RedisError as exc:
        logger.warning(
            "queue.schedule_failed",
            extra={"task_type": task.task_type, "queue_name": queue_name, "error": str(exc)},
        )
        return False
    logger.info(
        "queue.scheduled",
        extra={"task_type": task.task_type, "queue_name": queue_name, "delay_seconds": delay},
    )
    return True


def dequeue_task(
    queue_name: str | None = None,
    *,
    redis_url: str | None = None,
    block: bool = False,
    block_timeout: float = 0,
) -> QueuedTask | None:
    """Pop the oldest ready task, promoting any delayed tasks that have come due."""
    queue_name = queue_name or settings.rq_queue_name
    client = _redis_client(redis_url=redis_url)
    next_due = _promote_due_tasks(client, queue_name)
    raw: str | bytes | None
    if block:
        timeout = max(0.0, float(block_timeout))
        if next_due is not None:
            timeout = min(timeout, next_due) if timeout else next_due
        popped = cast(
            tuple[bytes | str, bytes | str] | None,
            client.brpop([queue_name], timeout=timeout),
        )
        raw = popped[1] if popped is not None else None
    else:
        raw = cast(str | bytes | None, client.rpop(queue_name))
    if raw is None:
        return None
    try:
        return QueuedTask.from_json(raw)
    except (ValueError, KeyError, TypeError):
        logger.error("queue.decode_failed", extra={"queue_name": queue_name, "raw_payload": str(raw)})
        raise


def requeue_if_failed(
    task: QueuedTask,
    queue_name: str | None = None,
    *,
    max_retries: int,
    redis_url: str | None = None,
    delay_seconds: float = 0,
) -> bool:
    """Requeue a failed task with its attempt count bumped; False once retries run out."""
    retry = replace(task, attempts=task.attempts + 1)
    if retry.attempts > max_retries:
        logger.warning(
            "queue.drop_failed_task",
            extra={"task_type": task.task_type, "attempts": retry.attempts},
        )
        return False
    return enqueue_task_with_delay(
        retry,
        queue_name,
        delay_seconds=delay_seconds,
        redis_url=redis_url,
    )
