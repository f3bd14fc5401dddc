# ruff: noqa: INP001
"""Integration tests for project webhook subscription endpoints."""

from __future__ import annotations

from uuid import uuid4

import pytest
from fastapi import APIRouter, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from worknest.api import webhooks as webhooks_api
from worknest.api.deps import require_user
from worknest.api.webhooks import router as webhooks_router
from worknest.db.session import get_session
from worknest.models.project_webhooks import ProjectWebhook
from worknest.models.projects import Project, ProjectMember
from worknest.models.users import User
from worknest.services.integrations.dispatch import WebhookDeliveryError


async def _make_engine() -> AsyncEngine:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)
    return engine


def _build_test_app(
    session_maker: async_sessionmaker[AsyncSession],
    current: dict[str, User],
) -> FastAPI:
    app = FastAPI()
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(webhooks_router)
    app.include_router(api_v1)

    async def _override_get_session() -> AsyncSession:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    app.dependency_overrides[require_user] = lambda: current["user"]
    return app


@pytest.mark.asyncio
async def test_webhook_crud_and_test_delivery(monkeypatch: pytest.MonkeyPatch) -> None:
    engine = await _make_engine()
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    owner = User(clerk_user_id=f"owner-{uuid4().hex}")
    member = User(clerk_user_id=f"member-{uuid4().hex}")
    project = Project(title="Board", owner_id=owner.id)
    async with session_maker() as session:
        session.add_all([owner, member, project])
        session.add(ProjectMember(project_id=project.id, user_id=owner.id, role="owner"))
        session.add(ProjectMember(project_id=project.id, user_id=member.id, role="member"))
        await session.commit()

    outcomes: list[int | None] = [200, None]
    sent: list[str] = []

    async def _fake_deliver(
        session: AsyncSession,
        webhook: ProjectWebhook,
        event: str,
        data: dict[str, object],
    ) -> int:
        sent.append(event)
        status_code = outcomes.pop(0)
        if status_code is None:
            webhook.last_status = 500
            raise WebhookDeliveryError("webhook responded with HTTP 500")
        return status_code

    monkeypatch.setattr(webhooks_api, "deliver_webhook", _fake_deliver)
    current = {"user": owner}
    app = _build_test_app(session_maker, current)
    base = f"/api/v1/projects/{project.id}/webhooks"

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
            created = await client.post(
                base,
                json={
                    "name": "Deploy bot",
                    "url": "https://hooks.example.test/deploy",
                    "events": ["task.updated", "task.created", "task.created"],
                    "secret": "s3cret",
                },
            )
            assert created.status_code == 201
            webhook = created.json()
            assert webhook["events"] == ["task.created", "task.updated"]
            assert webhook["has_secret"] is True
            assert "secret" not in webhook

            bad_event = await client.post(
                base,
                json={"name": "x", "url": "https://a.test", "events": ["task.exploded"]},
            )
            assert bad_event.status_code == 422
            bad_url = await client.post(
                base,
                json={"name": "x", "url": "ftp://a.test", "events": ["task.created"]},
            )
            assert bad_url.status_code == 422

            listed = await client.get(base)
            assert [item["id"] for item in listed.json()] == [webhook["id"]]

            ok = await client.post(f"{base}/{webhook['id']}/test")
            assert ok.json() == {"ok": True, "status_code": 200}
            failed = await client.post(f"{base}/{webhook['id']}/test")
            assert failed.json() == {"ok": False, "status_code": 500}
            assert sent == ["webhook.test", "webhook.test"]

            current["user"] = member
            assert (await client.get(base)).status_code == 403
            assert (await client.delete(f"{base}/{webhook['id']}")).status_code == 403

            current["user"] = owner
            assert (await client.delete(f"{base}/{uuid4()}")).status_code == 404
            deleted = await client.delete(f"{base}/{webhook['id']}")
            assert deleted.json() == {"ok": True}
            assert (await client.get(base)).json() == []
    finally:
        await engine.dispose()
