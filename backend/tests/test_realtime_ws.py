# ruff: noqa: INP001
"""WebSocket channel tests for joining boards and relaying events."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

import pytest
from fastapi import APIRouter, FastAPI
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from worknest.api import realtime as realtime_api
from worknest.api.realtime import Connection, JoinRefused, handle_message
from worknest.services import realtime
from worknest.services.realtime import RealtimeHub, project_room

ALICE = uuid4()
BOB = uuid4()
TOKENS = {"alice-token": ALICE, "bob-token": BOB}


@pytest.fixture
def hub(monkeypatch: pytest.MonkeyPatch) -> RealtimeHub:
    fresh = RealtimeHub(queue_size=16)
    monkeypatch.setattr(realtime, "hub", fresh)
    monkeypatch.setattr(realtime_api, "hub", fresh)
    return fresh


@pytest.fixture
def forbidden_project() -> UUID:
    return uuid4()


@pytest.fixture
def app(monkeypatch: pytest.MonkeyPatch, hub: RealtimeHub, forbidden_project: UUID) -> FastAPI:
    del hub

    async def _fake_authenticate(token: str | None) -> UUID | None:
        return TOKENS.get(token or "")

    async def _fake_check_join(connection: Connection, project_id: UUID) -> None:
        if project_id == forbidden_project:
            raise JoinRefused("Not a member of this project")

    monkeypatch.setattr(realtime_api, "_authenticate", _fake_authenticate)
    monkeypatch.setattr(realtime_api, "_check_join", _fake_check_join)

    application = FastAPI()
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(realtime_api.router)
    application.include_router(api_v1)
    return application


def _frame(event: str, **data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


def test_socket_without_valid_token_is_closed(app: FastAPI) -> None:
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/v1/realtime/ws"):
                pass
        assert exc_info.value.code == 1008

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/api/v1/realtime/ws?token=nope"):
                pass
        assert exc_info.value.code == 1008


def test_join_relay_and_leave_between_two_sockets(app: FastAPI, hub: RealtimeHub) -> None:
    project_id = str(uuid4())

    with TestClient(app) as client:
        with client.websocket_connect("/api/v1/realtime/ws?token=alice-token") as alice:
            alice.send_json(_frame("join-project", project_id=project_id))
            ack = alice.receive_json()
            assert ack["event"] == "joined-project"
            assert ack["data"]["user_id"] == str(ALICE)

            with client.websocket_connect(
                "/api/v1/realtime/ws",
                headers={"Authorization": "Bearer bob-token"},
            ) as bob:
                bob.send_json(_frame("join-project", project_id=project_id))
                assert bob.receive_json()["event"] == "joined-project"

                joined = alice.receive_json()
                assert joined["event"] == "user-joined-project"
                assert joined["data"]["user_id"] == str(BOB)

                bob.send_json(_frame("task-updated", project_id=project_id, task_id="t-1"))
                relayed = alice.receive_json()
                assert relayed["event"] == "task-updated"
                assert relayed["data"]["task_id"] == "t-1"
                assert relayed["data"]["updated_by"] == str(BOB)
                assert "timestamp" in relayed["data"]

                bob.send_json(_frame("leave-project", project_id=project_id))
                left = alice.receive_json()
                assert left["event"] == "user-left-project"
                assert left["data"]["user_id"] == str(BOB)

            alice.send_json(_frame("comment-added", project_id=project_id, comment={"text": "x"}))
            alice.send_json(_frame("leave-project", project_id=project_id))
            alice.send_json(_frame("join-project", project_id=project_id))
            assert alice.receive_json()["event"] == "joined-project"

    assert hub.room_size(project_room(project_id)) == 0


def test_refused_join_reports_error_and_keeps_socket_open(
    app: FastAPI,
    forbidden_project: UUID,
) -> None:
    allowed = str(uuid4())

    with TestClient(app) as client:
        with client.websocket_connect("/api/v1/realtime/ws?token=alice-token") as alice:
            alice.send_json(_frame("join-project", project_id=str(forbidden_project)))
            error = alice.receive_json()
            assert error == {
                "event": "error",
                "data": {
                    "message": "Not a member of this project",
                    "project_id": str(forbidden_project),
                },
            }

            alice.send_json(_frame("join-project", project_id=allowed))
            assert alice.receive_json()["event"] == "joined-project"


def _connection(hub: RealtimeHub, user_id: UUID = ALICE) -> Connection:
    return Connection(
        websocket=None,  # type: ignore[arg-type]
        subscriber=hub.connect(user_id),
        token="alice-token",
        user_id=user_id,
    )


@pytest.mark.asyncio
async def test_handle_message_rejects_malformed_frames(hub: RealtimeHub) -> None:
    connection = _connection(hub)

    assert await handle_message(connection, ["not", "a", "dict"]) is True
    assert await handle_message(connection, {"event": "join-project", "data": {}}) is True
    assert await handle_message(connection, {"event": "pong"}) is True

    errors = [connection.subscriber.queue.get_nowait() for _ in range(2)]
    assert [error["data"]["message"] for error in errors] == [
        "Malformed message",
        "project_id is required",
    ]
    assert connection.subscriber.queue.empty()


@pytest.mark.asyncio
async def test_relay_requires_joined_room(hub: RealtimeHub) -> None:
    connection = _connection(hub)
    watcher = hub.connect(BOB)
    project_id = uuid4()
    hub.join(watcher, project_room(project_id))

    await handle_message(
        connection,
        _frame("task-updated", project_id=str(project_id), task_id="t-1"),
    )

    assert connection.subscriber.queue.get_nowait()["event"] == "error"
    assert watcher.queue.empty()


@pytest.mark.asyncio
async def test_expired_credential_closes_connection(
    hub: RealtimeHub,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def _expired(connection: Connection, project_id: UUID) -> None:
        raise JoinRefused("Authentication expired", close=True)

    monkeypatch.setattr(realtime_api, "_check_join", _expired)
    connection = _connection(hub)

    keep_open = await handle_message(connection, _frame("join-project", project_id=str(uuid4())))

    assert keep_open is False
    assert connection.subscriber.queue.get_nowait()["data"]["message"] == "Authentication expired"
    assert connection.joined_projects() == []
