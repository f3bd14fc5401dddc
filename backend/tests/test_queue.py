# ruff: noqa: INP001
"""Redis list queue helper tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from worknest.services import queue
from worknest.services.queue import (
    QueuedTask,
    dequeue_task,
    enqueue_task,
    enqueue_task_with_delay,
    requeue_if_failed,
)


class _FakeRedis:
    def __init__(self) -> None:
        self.values: list[str] = []
        self.scheduled: dict[str, float] = {}

    def lpush(self, key: str, *values: str) -> None:
        del key
        for value in values:
            self.values.insert(0, value)

    def rpop(self, key: str) -> str | None:
        del key
        if not self.values:
            return None
        return self.values.pop()

    def zadd(self, key: str, mapping: dict[str, float]) -> None:
        del key
        self.scheduled.update(mapping)

    def zrem(self, key: str, *members: str) -> None:
        del key
        for member in members:
            self.scheduled.pop(member, None)

    def zrangebyscore(
        self,
        key: str,
        low: str | float,
        high: str | float,
        *,
        start: int,
        num: int,
        withscores: bool = False,
    ) -> list[object]:
        del key
        lo = float("-inf") if low == "-inf" else float(low)
        hi = float("inf") if high == "+inf" else float(high)
        items = sorted(
            ((member, score) for member, score in self.scheduled.items() if lo <= score <= hi),
            key=lambda item: item[1],
        )[start : start + num]
        if withscores:
            return list(items)
        return [member for member, _score in items]


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> _FakeRedis:
    fake = _FakeRedis()

    def _fake_client(redis_url: str | None = None) -> _FakeRedis:
        del redis_url
        return fake

    monkeypatch.setattr(queue, "_redis_client", _fake_client)
    return fake


def _task(attempts: int = 0) -> QueuedTask:
    return QueuedTask(
        task_type="project_webhook_delivery",
        payload={"event": "task.created"},
        created_at=datetime.now(UTC),
        attempts=attempts,
    )


@pytest.mark.parametrize("attempts", [0, 2])
def test_queue_roundtrip_preserves_envelope(fake_redis: _FakeRedis, attempts: int) -> None:
    payload = _task(attempts)

    assert enqueue_task(payload, "board-queue")
    item = dequeue_task("board-queue")

    assert item is not None
    assert item.task_type == payload.task_type
    assert item.payload == payload.payload
    assert item.attempts == attempts
    assert dequeue_task("board-queue") is None


def test_queue_is_first_in_first_out(fake_redis: _FakeRedis) -> None:
    for index in range(3):
        enqueue_task(QueuedTask("t", {"n": index}, datetime.now(UTC)), "q")

    assert [dequeue_task("q").payload["n"] for _ in range(3)] == [0, 1, 2]  # type: ignore[union-attr]


def test_delayed_task_waits_until_due(
    fake_redis: _FakeRedis,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = {"now": 1000.0}
    monkeypatch.setattr(queue, "_now_seconds", lambda: clock["now"])

    assert enqueue_task_with_delay(_task(), "q", delay_seconds=30)
    assert dequeue_task("q") is None

    clock["now"] = 1031.0
    item = dequeue_task("q")
    assert item is not None
    assert not fake_redis.scheduled


@pytest.mark.parametrize(("attempts", "requeued"), [(0, True), (2, True), (3, False)])
def test_requeue_respects_retry_cap(
    fake_redis: _FakeRedis,
    attempts: int,
    requeued: bool,
) -> None:
    assert requeue_if_failed(_task(attempts), "q", max_retries=3) is requeued
    if requeued:
        stored = json.loads(fake_redis.values[0])
        assert stored["attempts"] == attempts + 1
    else:
        assert fake_redis.values == []


def test_malformed_payload_raises_after_pop(fake_redis: _FakeRedis) -> None:
    fake_redis.values.append("{not json")

    with pytest.raises(ValueError):
        dequeue_task("q")
    assert fake_redis.values == []


def test_enqueue_reports_redis_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    class _Broken:
        def lpush(self, *args: object) -> None:
            raise queue.redis.ConnectionError("down")

    monkeypatch.setattr(queue, "_redis_client", lambda redis_url=None: _Broken())

    assert enqueue_task(_task(), "q") is False
