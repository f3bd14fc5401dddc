# ruff: noqa: INP001
"""Task list response cache tests."""

from __future__ import annotations

import fnmatch
import json
from collections.abc import AsyncIterator
from uuid import uuid4

import pytest
from redis.exceptions import RedisError

from worknest.services import cache
from worknest.services.cache import (
    cache_key,
    get_cached,
    invalidate_project_task_lists,
    set_cached,
    task_list_pattern,
)


class _FakeAsyncRedis:
    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        self.values[key] = value
        self.ttls[key] = ex

    async def scan_iter(self, match: str, count: int) -> AsyncIterator[str]:
        del count
        for key in list(self.values):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed


class _BrokenRedis:
    async def get(self, key: str) -> str | None:
        raise RedisError("down")

    async def set(self, key: str, value: str, ex: int | None = None) -> None:
        raise RedisError("down")

    async def scan_iter(self, match: str, count: int) -> AsyncIterator[str]:
        raise RedisError("down")
        yield ""  # pragma: no cover


@pytest.fixture
def fake_redis(monkeypatch: pytest.MonkeyPatch) -> _FakeAsyncRedis:
    fake = _FakeAsyncRedis()
    monkeypatch.setattr(cache, "_redis_client", lambda: fake)
    return fake


def test_cache_keys_are_scoped_by_user_and_url() -> None:
    user_id = uuid4()
    project_id = uuid4()

    key = cache_key(user_id, f"/api/v1/tasks/project/{project_id}?page=2")

    assert key == f"cache:{user_id}:/api/v1/tasks/project/{project_id}?page=2"
    assert fnmatch.fnmatchcase(key, task_list_pattern(project_id))
    assert not fnmatch.fnmatchcase(key, task_list_pattern(uuid4()))


@pytest.mark.asyncio
async def test_set_then_get_roundtrips_json(fake_redis: _FakeAsyncRedis) -> None:
    await set_cached("cache:u:/x", {"items": [1, 2], "total": 2}, ttl_seconds=30)

    assert await get_cached("cache:u:/x") == {"items": [1, 2], "total": 2}
    assert fake_redis.ttls["cache:u:/x"] == 30
    assert await get_cached("cache:u:/missing") is None


@pytest.mark.asyncio
async def test_corrupt_entry_reads_as_miss(fake_redis: _FakeAsyncRedis) -> None:
    fake_redis.values["cache:u:/x"] = "{broken"

    assert await get_cached("cache:u:/x") is None


@pytest.mark.asyncio
async def test_invalidation_drops_every_users_pages_for_one_project(
    fake_redis: _FakeAsyncRedis,
) -> None:
    project_id = uuid4()
    other_project = uuid4()
    for user in ("u1", "u2"):
        fake_redis.values[f"cache:{user}:/api/v1/tasks/project/{project_id}"] = json.dumps({})
        fake_redis.values[f"cache:{user}:/api/v1/tasks/project/{project_id}?page=2"] = "{}"
    kept = f"cache:u1:/api/v1/tasks/project/{other_project}"
    fake_redis.values[kept] = "{}"

    assert await invalidate_project_task_lists(project_id) == 4
    assert list(fake_redis.values) == [kept]


@pytest.mark.asyncio
async def test_redis_failures_degrade_to_miss(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cache, "_redis_client", lambda: _BrokenRedis())

    assert await get_cached("cache:u:/x") is None
    await set_cached("cache:u:/x", {"a": 1})
    assert await invalidate_project_task_lists(uuid4()) == 0


@pytest.mark.asyncio
async def test_disabled_cache_is_a_no_op(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cache.settings, "cache_redis_url", "")

    assert await get_cached("cache:u:/x") is None
    await set_cached("cache:u:/x", {"a": 1})
    assert await invalidate_project_task_lists(uuid4()) == 0
