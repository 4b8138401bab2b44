import uuid

import pytest
from sqlalchemy.dialects import sqlite
from sqlalchemy.schema import CreateTable

from lifelink.core import redis_client
from lifelink.core.config import settings
from lifelink.db.models import DonorNotification
from lifelink.services import cache_service


@pytest.fixture
def redis_url(monkeypatch):
    monkeypatch.setattr(redis_client, "_client", None)
    monkeypatch.setattr(redis_client, "_client_url", None)

    def _set(url):
        monkeypatch.setattr(settings, "REDIS_URL", url)

    return _set


@pytest.mark.parametrize("url", ["", "   ", "memory://", "MEMORY://"])
def test_caching_disabled(redis_url, url):
    redis_url(url)
    assert redis_client.get_redis_url() is None
    assert redis_client.get_sync_redis_client() is None


def test_client_reused_until_url_changes(redis_url):
    redis_url(" redis://localhost:6379/0 ")
    client = redis_client.get_sync_redis_client()
    assert client is not None
    assert redis_client.get_sync_redis_client() is client
    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["decode_responses"] is True
    assert kwargs["socket_timeout"] == settings.REDIS_SOCKET_TIMEOUT_SECONDS

    redis_url("redis://localhost:6379/3")
    moved = redis_client.get_sync_redis_client()
    assert moved is not client
    assert moved.connection_pool.connection_kwargs["db"] == 3


def test_unnamed_constraints_follow_naming_convention():
    ddl = str(CreateTable(DonorNotification.__table__).compile(dialect=sqlite.dialect()))

    assert "CONSTRAINT pk_donor_notifications PRIMARY KEY" in ddl
    assert "CONSTRAINT fk_donor_notifications_donor_id_users FOREIGN KEY" in ddl
    assert "CONSTRAINT uq_donor_notification_pair UNIQUE" in ddl


def test_cache_is_noop_without_redis(monkeypatch):
    monkeypatch.setattr(cache_service, "get_sync_redis_client", lambda: None)

    cache_service.set_json("notifications:user:x:unread", 3)

    assert cache_service.get_json("notifications:user:x:unread") is None
    assert cache_service.delete_pattern("notifications:user:x*") == 0


def test_cache_round_trip_and_invalidation(fake_redis):
    user_id = uuid.uuid4()
    other_id = uuid.uuid4()
    cache_service.set_json(cache_service.user_notifications_key(user_id, "unread"), 4)
    cache_service.set_json(cache_service.user_notifications_key(user_id, "list:1:20:0:all"), {"total": 4}, ttl_seconds=30)
    cache_service.set_json(cache_service.user_notifications_key(other_id, "unread"), 1)

    assert cache_service.get_json(f"notifications:user:{user_id}:unread") == 4
    assert fake_redis.ttls[f"notifications:user:{user_id}:list:1:20:0:all"] == 30

    assert cache_service.invalidate_user_notifications([user_id, user_id]) == 2
    assert cache_service.get_json(f"notifications:user:{user_id}:unread") is None
    assert cache_service.get_json(f"notifications:user:{other_id}:unread") == 1


def test_undecodable_cache_entry_is_a_miss(fake_redis):
    fake_redis.store["notifications:user:x:unread"] = "{not json"
    assert cache_service.get_json("notifications:user:x:unread") is None
