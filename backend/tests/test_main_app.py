# ruff: noqa: INP001
"""Smoke tests for the assembled application."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from worknest.main import app


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/health", "/healthz", "/readyz"])
async def test_health_endpoints_report_ok(path: str) -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        response = await client.get(path)

    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_api_routes_are_mounted_under_v1() -> None:
    paths = {getattr(route, "path", "") for route in app.routes}

    assert "/api/v1/auth/bootstrap" in paths
    assert "/api/v1/tasks/project/{project_id}" in paths
    assert "/api/v1/tasks/{task_id}" in paths
    assert "/api/v1/notifications" in paths
    assert "/api/v1/projects/{project_id}/webhooks" in paths
    assert "/api/v1/projects/{project_id}/events" in paths


@pytest.mark.asyncio
async def test_protected_route_without_credentials_is_unauthorized() -> None:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        response = await client.get("/api/v1/notifications")

    assert response.status_code == 401
    assert response.headers.get("X-Request-Id")
