# ruff: noqa: INP001
"""In-process realtime hub tests."""

from __future__ import annotations

from uuid import uuid4

import pytest

from worknest.services import realtime
from worknest.services.realtime import (
    RealtimeHub,
    project_room,
    publish_project_event,
    publish_user_event,
    stamp,
    user_room,
)


def _drain(subscriber: realtime.Subscriber) -> list[dict[str, object]]:
    messages = []
    while not subscriber.queue.empty():
        messages.append(subscriber.queue.get_nowait())
    return messages


@pytest.fixture
def hub(monkeypatch: pytest.MonkeyPatch) -> RealtimeHub:
    fresh = RealtimeHub(queue_size=4)
    monkeypatch.setattr(realtime, "hub", fresh)
    return fresh


def test_connect_joins_own_user_room(hub: RealtimeHub) -> None:
    user_id = uuid4()
    subscriber = hub.connect(user_id)

    assert subscriber.rooms == {user_room(user_id)}
    assert publish_user_event(user_id, "new-notification", {"id": "n1"}) == 1
    assert _drain(subscriber) == [{"event": "new-notification", "data": {"id": "n1"}}]


def test_project_events_reach_only_room_members_in_order(hub: RealtimeHub) -> None:
    project_id = uuid4()
    viewer = hub.connect(uuid4())
    other_board = hub.connect(uuid4())
    hub.join(viewer, project_room(project_id))
    hub.join(other_board, project_room(uuid4()))

    publish_project_event(project_id, "task-created", {"n": 1})
    publish_project_event(project_id, "task-updated", {"n": 2})
    publish_project_event(project_id, "task-deleted", {"n": 3})

    assert [message["event"] for message in _drain(viewer)] == [
        "task-created",
        "task-updated",
        "task-deleted",
    ]
    assert _drain(other_board) == []


def test_publish_can_exclude_the_sender(hub: RealtimeHub) -> None:
    room = project_room(uuid4())
    sender = hub.connect(uuid4())
    receiver = hub.connect(uuid4())
    hub.join(sender, room)
    hub.join(receiver, room)

    assert hub.publish(room, "comment-added", {"text": "hi"}, exclude=sender) == 1
    assert _drain(sender) == []
    assert len(_drain(receiver)) == 1


def test_full_queue_drops_messages_without_blocking_others(hub: RealtimeHub) -> None:
    room = project_room(uuid4())
    slow = hub.connect(uuid4())
    fast = hub.connect(uuid4())
    hub.join(slow, room)
    hub.join(fast, room)

    delivered = [hub.publish(room, "task-updated", {"n": n}) for n in range(4)]
    _drain(fast)
    delivered.append(hub.publish(room, "task-updated", {"n": 4}))

    assert delivered == [2, 2, 2, 2, 1]
    assert [message["data"]["n"] for message in _drain(slow)] == [0, 1, 2, 3]
    assert [message["data"]["n"] for message in _drain(fast)] == [4]


def test_disconnect_leaves_every_room(hub: RealtimeHub) -> None:
    room = project_room(uuid4())
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, room)

    hub.disconnect(subscriber)

    assert subscriber.rooms == set()
    assert hub.room_size(room) == 0
    assert hub.publish(room, "task-created", {}) == 0


def test_publish_helpers_never_raise(monkeypatch: pytest.MonkeyPatch) -> None:
    class _BrokenHub:
        def publish(self, *args: object, **kwargs: object) -> int:
            raise RuntimeError("boom")

    monkeypatch.setattr(realtime, "hub", _BrokenHub())

    assert publish_project_event(uuid4(), "task-created", {}) == 0


def test_stamp_adds_timestamp_without_mutating_input() -> None:
    data = {"task_id": "t1"}
    stamped = stamp(data)

    assert "timestamp" in stamped
    assert stamped["task_id"] == "t1"
    assert data == {"task_id": "t1"}
