"""
Redis-backed JSON cache for notification reads.

Best-effort: when Redis is disabled (REDIS_URL unset or memory://) or
unreachable, reads miss and writes/deletes are skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable
from uuid import UUID

from lifelink.core.config import settings
from lifelink.core.redis_client import get_sync_redis_client

logger = logging.getLogger(__name__)

NOTIFICATION_KEY_PREFIX = "notifications:user"


def user_notifications_key(user_id: UUID, suffix: str) -> str:
    return f"{NOTIFICATION_KEY_PREFIX}:{user_id}:{suffix}"


def get_json(key: str) -> Any | None:
    client = get_sync_redis_client()
    if client is None:
        return None
    try:
        raw = client.get(key)
    except Exception:
        logger.warning("Cache read failed for %s", key, exc_info=True)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Discarding undecodable cache entry %s", key)
        return None


def set_json(key: str, value: Any, ttl_seconds: int | None = None) -> None:
    client = get_sync_redis_client()
    if client is None:
        return
    ttl = ttl_seconds or settings.NOTIFICATION_CACHE_TTL_SECONDS
    try:
        client.set(key, json.dumps(value, default=str), ex=ttl)
    except Exception:
        logger.warning("Cache write failed for %s", key, exc_info=True)


def delete_pattern(pattern: str) -> int:
    """Delete every key matching a glob pattern. Returns keys removed."""
    client = get_sync_redis_client()
    if client is None:
        return 0
    try:
        keys = list(client.scan_iter(match=pattern, count=500))
        if not keys:
            return 0
        return client.delete(*keys)
    except Exception:
        logger.warning("Cache invalidation failed for %s", pattern, exc_info=True)
        return 0


def invalidate_user_notifications(user_ids: Iterable[UUID]) -> int:
    """Drop cached notification lists and unread counts for users."""
    removed = 0
    for user_id in set(user_ids):
        removed += delete_pattern(f"{NOTIFICATION_KEY_PREFIX}:{user_id}*")
    return removed
