"""Shared Redis connection for the notification read caches."""

from __future__ import annotations

import redis

from lifelink.core.config import settings

REDIS_DISABLED_URL = "memory://"

_client: redis.Redis | None = None
_client_url: str | None = None


def get_redis_url() -> str | None:
    url = (settings.REDIS_URL or "").strip()
    if not url or url.lower() == REDIS_DISABLED_URL:
        return None
    return url


def get_sync_redis_client() -> redis.Redis | None:
    """Client for REDIS_URL, or None when caching is off. Rebuilt if the URL changes."""
    global _client, _client_url
    url = get_redis_url()
    if not url:
        return None
    if _client is None or _client_url != url:
        _client = redis.Redis.from_url(
            url,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            decode_responses=True,
        )
        _client_url = url
    return _client
