"""Read-through cache for task list responses, keyed per user and URL.

Keys look like `cache:<user_id>:<path?query>`. Any board mutation drops every
cached list page of that project for every user. Redis problems never reach
the caller: reads degrade to a miss and writes or deletions are skipped.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from worknest.core.config import settings
from worknest.core.logging import get_logger

logger = get_logger(__name__)
CACHE_KEY_PREFIX = "cache"
TASK_LIST_PATH = "/api/v1/tasks/project"

_client: aioredis.Redis | None = None


def cache_key(user_id: object, path_with_query: str) -> str:
    return f"{CACHE_KEY_PREFIX}:{user_id}:{path_with_query}"


def task_list_pattern(project_id: object) -> str:
    return f"{CACHE_KEY_PREFIX}:*:{TASK_LIST_PATH}/{project_id}*"


def _redis_client() -> aioredis.Redis | None:
    global _client
    if not settings.cache_redis_url:
        return None
    if _client is None:
        _client = aioredis.Redis.from_url(settings.cache_redis_url, decode_responses=True)
    return _client


async def get_cached(key: str) -> Any | None:
    client = _redis_client()
    if client is None:
        return None
    try:
        raw = await client.get(key)
    except RedisError as exc:
        logger.warning("cache.get.failed", extra={"key": key, "error": str(exc)})
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("cache.get.corrupt", extra={"key": key})
        return None


async def set_cached(key: str, value: Any, ttl_seconds: int | None = None) -> None:
    client = _redis_client()
    if client is None:
        return
    ttl = ttl_seconds or settings.task_list_cache_ttl_seconds
    try:
        await client.set(key, json.dumps(value, default=str), ex=ttl)
    except RedisError as exc:
        logger.warning("cache.set.failed", extra={"key": key, "error": str(exc)})


async def invalidate_pattern(pattern: str) -> int:
    """Delete every key matching `pattern`; returns the number removed."""
    client = _redis_client()
    if client is None:
        return 0
    removed = 0
    try:
        keys = [key async for key in client.scan_iter(match=pattern, count=500)]
        if keys:
            removed = int(await client.delete(*keys))
    except RedisError as exc:
        logger.warning("cache.invalidate.failed", extra={"pattern": pattern, "error": str(exc)})
        return 0
    logger.debug("cache.invalidate", extra={"pattern": pattern, "removed": removed})
    return removed


async def invalidate_project_task_lists(project_id: object) -> int:
    return await invalidate_pattern(task_list_pattern(project_id))
