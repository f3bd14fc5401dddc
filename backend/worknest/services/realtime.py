"""In-process fan-out of board events to connected clients.

Each connection (WebSocket or SSE stream) registers a `Subscriber` and joins
rooms: `project:<id>` for board changes and `user:<id>` for personal
notifications. Publishing copies the message into every member's bounded
queue in publish order; a subscriber that falls behind loses messages rather
than slowing the publisher down. Publishing never raises, so callers may emit
events after their database commit without guarding the call.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.core.time import utcnow

logger = get_logger(__name__)


def project_room(project_id: UUID | str) -> str:
    return f"project:{project_id}"


def user_room(user_id: UUID | str) -> str:
    return f"user:{user_id}"


@dataclass
class Subscriber:
    """One connected client and the rooms it currently belongs to."""

    user_id: UUID
    queue: asyncio.Queue[dict[str, Any]]
    id: UUID = field(default_factory=uuid4)
    rooms: set[str] = field(default_factory=set)

    def push(self, event: str, data: dict[str, Any]) -> bool:
        """Queue one message for this connection; False when its queue is full."""
        try:
            self.queue.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            return False
        return True

    async def next_message(self) -> dict[str, Any]:
        return await self.queue.get()


class RealtimeHub:
    """Room registry and publisher shared by the whole process."""

    def __init__(self, queue_size: int | None = None) -> None:
        self.queue_size = queue_size or settings.realtime_queue_size
        self._rooms: dict[str, dict[UUID, Subscriber]] = {}

    def connect(self, user_id: UUID) -> Subscriber:
        """Register a connection; it starts out in its own user room."""
        subscriber = Subscriber(user_id=user_id, queue=asyncio.Queue(maxsize=self.queue_size))
        self.join(subscriber, user_room(user_id))
        return subscriber

    def disconnect(self, subscriber: Subscriber) -> None:
        for room in list(subscriber.rooms):
            self.leave(subscriber, room)

    def join(self, subscriber: Subscriber, room: str) -> None:
        self._rooms.setdefault(room, {})[subscriber.id] = subscriber
        subscriber.rooms.add(room)

    def leave(self, subscriber: Subscriber, room: str) -> None:
        members = self._rooms.get(room)
        if members is not None:
            members.pop(subscriber.id, None)
            if not members:
                del self._rooms[room]
        subscriber.rooms.discard(room)

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, {}))

    def publish(
        self,
        room: str,
        event: str,
        data: dict[str, Any],
        *,
        exclude: Subscriber | None = None,
    ) -> int:
        """Queue `event` for every subscriber in `room`; returns how many received it."""
        delivered = 0
        for subscriber in list(self._rooms.get(room, {}).values()):
            if exclude is not None and subscriber.id == exclude.id:
                continue
            if not subscriber.push(event, data):
                logger.warning(
                    "realtime.publish.dropped",
                    extra={"room": room, "event": event, "subscriber_id": str(subscriber.id)},
                )
                continue
            delivered += 1
        logger.debug(
            "realtime.publish",
            extra={"room": room, "event": event, "delivered": delivered},
        )
        return delivered


hub = RealtimeHub()


def _safe_publish(room: str, event: str, data: dict[str, Any], exclude: Subscriber | None) -> int:
    try:
        return hub.publish(room, event, data, exclude=exclude)
    except Exception:
        logger.exception("realtime.publish.failed", extra={"room": room, "event": event})
        return 0


def publish_project_event(
    project_id: UUID | str,
    event: str,
    data: dict[str, Any],
    *,
    exclude: Subscriber | None = None,
) -> int:
    """Broadcast a board event to everyone viewing the project."""
    return _safe_publish(project_room(project_id), event, data, exclude)


def publish_user_event(user_id: UUID | str, event: str, data: dict[str, Any]) -> int:
    """Deliver an event to every open connection of one user."""
    return _safe_publish(user_room(user_id), event, data, None)


def stamp(data: dict[str, Any]) -> dict[str, Any]:
    """Return `data` with a server-side ISO timestamp added."""
    return {**data, "timestamp": utcnow().isoformat()}
