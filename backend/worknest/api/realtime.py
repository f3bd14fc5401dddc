"""WebSocket endpoint for live board events.

Clients connect to `/realtime/ws` with their bearer credential (query string
`token` or `Authorization` header) and exchange JSON frames shaped like
`{"event": <name>, "data": {...}}`. A connection always receives its own
user-room events (`new-notification`) and, after `join-project`, the events
of that project's room. Membership is checked again on every join, with the
credential re-authenticated, so a revoked member cannot rejoin a board.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from worknest.core.auth import extract_bearer_token, resolve_user_for_token
from worknest.core.config import settings
from worknest.core.logging import get_logger
from worknest.db import session as db_session
from worknest.models.projects import Project
from worknest.services.board_access import BoardAccessDenied, authorize
from worknest.services.realtime import Subscriber, hub, project_room, stamp

router = APIRouter(prefix="/realtime", tags=["realtime"])
logger = get_logger(__name__)

RELAYED_EVENTS = {"task-updated": "updated_by", "comment-added": "added_by"}


class JoinRefused(Exception):
    """Raised when a join request fails authentication or membership checks."""

    def __init__(self, message: str, *, close: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.close = close


@dataclass
class Connection:
    """State kept for one accepted WebSocket."""

    websocket: WebSocket
    subscriber: Subscriber
    token: str
    user_id: UUID

    def joined(self, project_id: UUID) -> bool:
        return project_room(project_id) in self.subscriber.rooms

    def joined_projects(self) -> list[str]:
        prefix = project_room("")
        return [room[len(prefix) :] for room in self.subscriber.rooms if room.startswith(prefix)]


def _project_id_from(data: Any) -> UUID | None:
    if not isinstance(data, dict):
        return None
    try:
        return UUID(str(data.get("project_id")))
    except ValueError:
        return None


async def _authenticate(token: str | None) -> UUID | None:
    async with db_session.async_session_maker() as session:
        user = await resolve_user_for_token(session, token)
        return user.id if user is not None else None


async def _check_join(connection: Connection, project_id: UUID) -> None:
    """Re-authenticate the stored credential and require read membership."""
    async with db_session.async_session_maker() as session:
        user = await resolve_user_for_token(session, connection.token)
        if user is None or user.id != connection.user_id:
            raise JoinRefused("Authentication expired", close=True)
        project = await Project.objects.by_id(project_id).first(session)
        if project is None:
            raise JoinRefused("Project not found")
        try:
            await authorize(session, user=user, project=project, level="read")
        except BoardAccessDenied as exc:
            raise JoinRefused(exc.message) from exc


async def _join_project(connection: Connection, project_id: UUID) -> None:
    await _check_join(connection, project_id)
    room = project_room(project_id)
    hub.join(connection.subscriber, room)
    user_id = str(connection.user_id)
    connection.subscriber.push(
        "joined-project",
        stamp({"project_id": str(project_id), "user_id": user_id}),
    )
    hub.publish(
        room,
        "user-joined-project",
        stamp({"project_id": str(project_id), "user_id": user_id}),
        exclude=connection.subscriber,
    )
    logger.info("realtime.ws.joined", extra={"project_id": str(project_id), "user_id": user_id})


def _leave_project(connection: Connection, project_id: UUID | str) -> None:
    room = project_room(project_id)
    if room not in connection.subscriber.rooms:
        return
    hub.leave(connection.subscriber, room)
    hub.publish(
        room,
        "user-left-project",
        stamp({"project_id": str(project_id), "user_id": str(connection.user_id)}),
    )
    logger.info(
        "realtime.ws.left",
        extra={"project_id": str(project_id), "user_id": str(connection.user_id)},
    )


def _relay(connection: Connection, event: str, data: dict[str, Any], project_id: UUID) -> None:
    """Re-broadcast a client-originated board event to the rest of the room."""
    if not connection.joined(project_id):
        connection.subscriber.push("error", {"message": "Join the project before sending events"})
        return
    payload = stamp({**data, RELAYED_EVENTS[event]: str(connection.user_id)})
    hub.publish(project_room(project_id), event, payload, exclude=connection.subscriber)


async def handle_message(connection: Connection, message: Any) -> bool:
    """Apply one client frame; returns False when the connection must close."""
    if not isinstance(message, dict) or not isinstance(message.get("event"), str):
        connection.subscriber.push("error", {"message": "Malformed message"})
        return True
    event = message["event"]
    data = message.get("data") or {}
    if event == "pong":
        return True
    project_id = _project_id_from(data)
    if event in ("join-project", "leave-project", *RELAYED_EVENTS) and project_id is None:
        connection.subscriber.push("error", {"message": "project_id is required"})
        return True

    if event == "join-project":
        try:
            await _join_project(connection, project_id)
        except JoinRefused as exc:
            connection.subscriber.push(
                "error",
                {"message": exc.message, "project_id": str(project_id)},
            )
            return not exc.close
    elif event == "leave-project":
        _leave_project(connection, project_id)
    elif event in RELAYED_EVENTS:
        _relay(connection, event, data, project_id)
    else:
        logger.debug("realtime.ws.unknown_event", extra={"event": event})
    return True


async def _send_loop(connection: Connection) -> None:
    """Forward queued room events to the socket and ping while idle."""
    interval = settings.realtime_ping_interval_seconds
    while True:
        try:
            message = await asyncio.wait_for(connection.subscriber.next_message(), timeout=interval)
        except TimeoutError:
            message = {"event": "ping", "data": stamp({})}
        await connection.websocket.send_json(message)


async def _receive_loop(connection: Connection) -> None:
    idle_timeout = settings.realtime_ping_timeout_seconds
    while True:
        try:
            message = await asyncio.wait_for(
                connection.websocket.receive_json(),
                timeout=idle_timeout,
            )
        except TimeoutError:
            logger.info("realtime.ws.idle_timeout", extra={"user_id": str(connection.user_id)})
            await connection.websocket.close(code=status.WS_1001_GOING_AWAY)
            return
        except ValueError:
            connection.subscriber.push("error", {"message": "Malformed message"})
            continue
        if not await handle_message(connection, message):
            await connection.websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str | None = None) -> None:
    """Authenticated board event socket."""
    credential = token or extract_bearer_token(websocket.headers.get("Authorization"))
    user_id = await _authenticate(credential)
    if user_id is None or credential is None:
        logger.info("realtime.ws.rejected")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = Connection(
        websocket=websocket,
        subscriber=hub.connect(user_id),
        token=credential,
        user_id=user_id,
    )
    logger.info("realtime.ws.connected", extra={"user_id": str(user_id)})
    sender = asyncio.create_task(_send_loop(connection))
    try:
        await _receive_loop(connection)
    except WebSocketDisconnect as exc:
        logger.debug("realtime.ws.client_closed", extra={"user_id": str(user_id), "code": exc.code})
    finally:
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
        for project_id in connection.joined_projects():
            _leave_project(connection, project_id)
        hub.disconnect(connection.subscriber)
        logger.info("realtime.ws.disconnected", extra={"user_id": str(user_id)})
