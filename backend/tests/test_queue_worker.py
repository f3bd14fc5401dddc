# ruff: noqa: INP001
"""Queue worker dispatch and retry tests."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from worknest.services import queue_worker
from worknest.services.integrations.queue import TASK_TYPE as WEBHOOK_TASK_TYPE
from worknest.services.queue import QueuedTask
from worknest.services.queue_worker import _TASK_HANDLERS, _run_task, _TaskHandler, flush_queue
from worknest.services.reminders import TASK_TYPE as REMINDER_TASK_TYPE


def _task(task_type: str = "fake", attempts: int = 0) -> QueuedTask:
    return QueuedTask(task_type=task_type, payload={}, created_at=datetime.now(UTC), attempts=attempts)


def test_worker_registers_webhook_and_reminder_handlers() -> None:
    assert WEBHOOK_TASK_TYPE in _TASK_HANDLERS
    assert REMINDER_TASK_TYPE in _TASK_HANDLERS


def test_reminder_failures_are_not_retried() -> None:
    assert _TASK_HANDLERS[REMINDER_TASK_TYPE].requeue(_task(REMINDER_TASK_TYPE), 1.0) is False


@pytest.mark.asyncio
async def test_run_task_dispatches_by_type(monkeypatch: pytest.MonkeyPatch) -> None:
    handled: list[QueuedTask] = []

    async def _handler(task: QueuedTask) -> None:
        handled.append(task)

    handler = _TaskHandler(handler=_handler, requeue=lambda task, delay: True)
    monkeypatch.setitem(_TASK_HANDLERS, "fake", handler)

    assert await _run_task(_task()) is True
    assert len(handled) == 1
    assert await _run_task(_task("unknown")) is False


@pytest.mark.asyncio
async def test_failed_task_is_requeued_with_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    delays: list[float] = []

    async def _boom(task: QueuedTask) -> None:
        raise RuntimeError("receiver down")

    def _requeue(task: QueuedTask, delay: float) -> bool:
        delays.append(delay)
        return len(delays) < 2

    monkeypatch.setattr(queue_worker, "_compute_jitter", lambda base_delay: 0.0)
    monkeypatch.setitem(
        _TASK_HANDLERS,
        "fake",
        _TaskHandler(handler=_boom, requeue=_requeue, attempts_to_delay=lambda attempts: 10.0 * (attempts + 1)),
    )

    assert await _run_task(_task(attempts=0)) is False
    assert await _run_task(_task(attempts=2)) is False
    assert delays == [10.0, 30.0]


def test_backoff_is_capped(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(queue_worker.settings, "rq_dispatch_retry_base_seconds", 5.0)
    monkeypatch.setattr(queue_worker.settings, "rq_dispatch_retry_max_seconds", 60.0)

    assert [queue_worker._backoff_seconds(n) for n in range(5)] == [5.0, 10.0, 20.0, 40.0, 60.0]


@pytest.mark.asyncio
async def test_flush_queue_drains_and_skips_malformed(monkeypatch: pytest.MonkeyPatch) -> None:
    items: list[QueuedTask | Exception | None] = [_task(), ValueError("bad json"), _task("unknown"), _task()]
    handled: list[QueuedTask] = []

    def _dequeue(*args: object, **kwargs: object) -> QueuedTask | None:
        if not items:
            return None
        item = items.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def _handler(task: QueuedTask) -> None:
        handled.append(task)

    monkeypatch.setattr(queue_worker, "dequeue_task", _dequeue)
    monkeypatch.setattr(queue_worker.settings, "rq_dispatch_throttle_seconds", 0)
    monkeypatch.setitem(_TASK_HANDLERS, "fake", _TaskHandler(handler=_handler, requeue=lambda t, d: True))

    assert await flush_queue() == 2
    assert len(handled) == 2
    assert items == []
