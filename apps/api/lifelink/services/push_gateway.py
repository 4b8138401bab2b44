"""
Tenant push gateway - resolves and uses the push client for a tenant.

Each tenant may bring its own push credentials (TenantPushConfig). The
gateway caches one client per tenant for a bounded TTL, falls back to the
system-default client when a tenant is unconfigured, inactive, over quota
or has unusable credentials, and keeps the tenant's send counters.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
import weakref
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, ClassVar
from uuid import UUID

import anyio
from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.errors import CredentialError, DeliveryError, ValidationError
from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import NotificationPriority
from lifelink.db.models import TenantPushConfig
from lifelink.services import donor_service
from lifelink.services.push_config_service import TenantCredentials, load_tenant_credentials
from lifelink.services.push_provider import (
    FcmPushProvider,
    MockPushProvider,
    MulticastResult,
    PushProvider,
    SendResult,
)
from lifelink.utils.datetime_utils import as_utc, start_of_day, start_of_month, utc_now

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[TenantCredentials], "PushProvider | Awaitable[PushProvider]"]

DEFAULT_WEB_ICON = "/icons/icon-192x192.png"
DEFAULT_WEB_BADGE = "/icons/badge-72x72.png"


# =============================================================================
# Client variants
# =============================================================================


@dataclass(frozen=True)
class DefaultPushClient:
    """System-wide client (real credentials or mock). Never tenant-branded."""

    provider: PushProvider
    is_default: ClassVar[bool] = True
    tenant_id: ClassVar[None] = None


@dataclass(frozen=True)
class TenantPushClient:
    """Client built from a tenant's own credentials."""

    tenant_id: UUID
    config_id: UUID
    provider: PushProvider
    default_icon: str | None = None
    default_badge: str | None = None
    default_sound: str | None = None
    is_default: ClassVar[bool] = False


PushClient = DefaultPushClient | TenantPushClient


@dataclass
class CachedClient:
    client: TenantPushClient
    expires_at: float
    config_snapshot: dict[str, Any] = field(default_factory=dict)


@dataclass
class MulticastRequest:
    """One message for a batch of device tokens."""

    tokens: list[str]
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    notification_type: str | None = None
    timeout: float | None = None


# =============================================================================
# Payload building
# =============================================================================


def sanitize_data(data: dict[str, Any] | None) -> dict[str, str]:
    """Push data payloads only carry strings; None values are dropped."""
    sanitized: dict[str, str] = {}
    for key, value in (data or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            sanitized[key] = value
        elif isinstance(value, (dict, list, bool)):
            sanitized[key] = json.dumps(value, default=str)
        else:
            sanitized[key] = str(value)
    return sanitized


def channel_for_type(notification_type: str | None) -> str:
    """Android notification channel for a notification type."""
    if not notification_type:
        return "general"
    if "LIFELINK_EMERGENCY" in notification_type:
        return "lifelink_emergency"
    if "LIFELINK" in notification_type:
        return "lifelink_general"
    return "general"


def build_message(client: PushClient, request: MulticastRequest) -> dict[str, Any]:
    """Build the provider message (without the token/topic target)."""
    data = dict(request.data)
    if request.notification_type and "type" not in data:
        data["type"] = request.notification_type
    high = request.priority.provider_priority == "high"

    icon = badge = sound = None
    if not client.is_default:
        icon, badge, sound = client.default_icon, client.default_badge, client.default_sound

    android_notification: dict[str, Any] = {
        "channel_id": channel_for_type(data.get("type")),
        "notification_priority": "PRIORITY_HIGH" if high else "PRIORITY_DEFAULT",
        "default_sound": True,
    }
    if icon:
        android_notification["icon"] = icon

    return {
        "notification": {"title": request.title, "body": request.body},
        "data": sanitize_data(data),
        "android": {
            "priority": request.priority.provider_priority,
            "notification": android_notification,
        },
        "apns": {
            "headers": {"apns-priority": "10" if high else "5"},
            "payload": {
                "aps": {
                    "alert": {"title": request.title, "body": request.body},
                    "sound": sound or "default",
                    "badge": 1,
                }
            },
        },
        "webpush": {
            "notification": {
                "title": request.title,
                "body": request.body,
                "icon": icon or DEFAULT_WEB_ICON,
                "badge": badge or DEFAULT_WEB_BADGE,
                "tag": data.get("type") or "default",
                "requireInteraction": high,
            }
        },
    }


# =============================================================================
# Providers
# =============================================================================


def build_default_provider() -> PushProvider:
    """FCM with system credentials when configured, otherwise the mock."""
    if not settings.has_default_push_credentials:
        logger.info("No system push credentials configured - using mock push provider")
        return MockPushProvider()
    try:
        return FcmPushProvider(
            settings.FIREBASE_PROJECT_ID,
            settings.FIREBASE_CLIENT_EMAIL,
            settings.FIREBASE_PRIVATE_KEY,
            timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
        )
    except CredentialError as e:
        logger.warning(f"System push credentials unusable, using mock provider: {e}")
        return MockPushProvider()


def fcm_provider_factory(credentials: TenantCredentials) -> PushProvider:
    return FcmPushProvider(
        credentials.project_id,
        credentials.client_email,
        credentials.private_key,
        timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
    )


# =============================================================================
# Quota accounting
# =============================================================================


def reset_quota_windows(db: Session, config_id: UUID, now=None) -> None:
    """
    Zero the daily/monthly counters once per boundary.

    Conditional UPDATEs: only the first caller after a boundary matches
    the WHERE clause, so concurrent resolvers cannot double-reset.
    """
    now = as_utc(now) if now else utc_now()
    day_start = start_of_day(now)
    month_start = start_of_month(now)

    db.execute(
        update(TenantPushConfig)
        .where(
            TenantPushConfig.id == config_id,
            or_(
                TenantPushConfig.last_daily_reset.is_(None),
                TenantPushConfig.last_daily_reset < day_start,
            ),
        )
        .values(daily_sent=0, last_daily_reset=now)
        .execution_options(synchronize_session=False)
    )
    db.execute(
        update(TenantPushConfig)
        .where(
            TenantPushConfig.id == config_id,
            or_(
                TenantPushConfig.last_monthly_reset.is_(None),
                TenantPushConfig.last_monthly_reset < month_start,
            ),
        )
        .values(monthly_sent=0, last_monthly_reset=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()


def has_quota(db: Session, config_id: UUID, now=None) -> bool:
    """Reset rolled-over windows, then compare counters to limits."""
    reset_quota_windows(db, config_id, now)
    row = db.execute(
        select(
            TenantPushConfig.daily_sent,
            TenantPushConfig.daily_limit,
            TenantPushConfig.monthly_sent,
            TenantPushConfig.monthly_limit,
        ).where(TenantPushConfig.id == config_id)
    ).one_or_none()
    if row is None:
        return False
    daily_sent, daily_limit, monthly_sent, monthly_limit = row
    return daily_sent < daily_limit and monthly_sent < monthly_limit


def increment_send_counters(db: Session, config_id: UUID, count: int) -> None:
    """Atomic counter bump (SET x = x + n); no read-modify-write."""
    if count <= 0:
        return
    db.execute(
        update(TenantPushConfig)
        .where(TenantPushConfig.id == config_id)
        .values(
            daily_sent=TenantPushConfig.daily_sent + count,
            monthly_sent=TenantPushConfig.monthly_sent + count,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


# =============================================================================
# Gateway
# =============================================================================


class TenantPushGateway:
    """
    Resolves, caches and uses push clients per tenant.

    One instance per process (see get_push_gateway); the dispatcher and
    config service receive it explicitly.
    """

    def __init__(
        self,
        *,
        default_provider: PushProvider | None = None,
        provider_factory: ProviderFactory | None = None,
        cache_ttl_seconds: float | None = None,
        batch_size: int | None = None,
        send_timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_client = DefaultPushClient(default_provider or build_default_provider())
        self._provider_factory = provider_factory or fcm_provider_factory
        self.cache_ttl_seconds = (
            settings.PUSH_CLIENT_CACHE_TTL_SECONDS if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self.batch_size = batch_size or settings.PUSH_MULTICAST_BATCH_SIZE
        self.send_timeout = send_timeout or settings.PUSH_SEND_TIMEOUT_SECONDS
        self._clock = clock
        self._cache: dict[UUID, CachedClient] = {}
        # Locks belong to the loop that created them
        self._locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[UUID, asyncio.Lock]] = (
            weakref.WeakKeyDictionary()
        )

    # -------------------------------------------------------------------------
    # Cache
    # -------------------------------------------------------------------------

    def _lock_for(self, tenant_id: UUID) -> asyncio.Lock:
        loop_locks = self._locks.setdefault(asyncio.get_running_loop(), {})
        return loop_locks.setdefault(tenant_id, asyncio.Lock())

    def _drop_locks(self, tenant_id: UUID | None = None) -> None:
        for loop_locks in list(self._locks.values()):
            for key in [tenant_id] if tenant_id is not None else list(loop_locks):
                lock = loop_locks.get(key)
                if lock is not None and not lock.locked():
                    loop_locks.pop(key)

    def _get_cached(self, tenant_id: UUID) -> CachedClient | None:
        cached = self._cache.get(tenant_id)
        if cached is None:
            return None
        if cached.expires_at <= self._clock():
            self._cache.pop(tenant_id, None)
            return None
        return cached

    def cached_client(self, tenant_id: UUID) -> TenantPushClient | None:
        cached = self._get_cached(tenant_id)
        return cached.client if cached else None

    def invalidate(self, tenant_id: UUID) -> None:
        """Drop the tenant's client; the next resolve rebuilds from storage."""
        if self._cache.pop(tenant_id, None) is not None:
            logger.info("Push client cache cleared", extra=build_log_context(tenant_id=tenant_id))
        self._drop_locks(tenant_id)

    def clear(self) -> None:
        self._cache.clear()
        self._drop_locks()
        logger.info("Push client cache cleared for all tenants")

    async def build_provider(self, credentials: TenantCredentials) -> PushProvider:
        """Create a provider from decrypted tenant credentials."""
        provider = self._provider_factory(credentials)
        if inspect.isawaitable(provider):
            provider = await provider
        return provider

    async def _build_client(self, db: Session, tenant_id: UUID) -> CachedClient | None:
        config = (
            db.query(TenantPushConfig)
            .filter(TenantPushConfig.organization_id == tenant_id)
            .first()
        )
        if not config or not config.is_configured or not config.is_active:
            return None

        try:
            provider = await self.build_provider(load_tenant_credentials(config))
        except CredentialError as e:
            logger.warning(
                "Tenant push credentials unusable, using default client: %s",
                e,
                extra=build_log_context(tenant_id=tenant_id),
            )
            return None

        client = TenantPushClient(
            tenant_id=tenant_id,
            config_id=config.id,
            provider=provider,
            default_icon=config.default_icon,
            default_badge=config.default_badge,
            default_sound=config.default_sound,
        )
        return CachedClient(
            client=client,
            expires_at=self._clock() + self.cache_ttl_seconds,
            config_snapshot={
                "project_id": config.project_id,
                "client_email": config.client_email,
                "daily_limit": config.daily_limit,
                "monthly_limit": config.monthly_limit,
                "updated_at": as_utc(config.updated_at).isoformat() if config.updated_at else None,
            },
        )

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    async def resolve_client(self, db: Session, tenant_id: UUID | None, *, now=None) -> PushClient:
        """
        Pick the client for a tenant.

        Cached tenant client if fresh, else built from the tenant's config
        (single-flight per tenant). Unconfigured/inactive config, unusable
        credentials and exhausted quota all yield the default client.
        """
        if tenant_id is None:
            return self.default_client

        cached = self._get_cached(tenant_id)
        if cached is None:
            async with self._lock_for(tenant_id):
                # Another caller may have built it while we waited
                cached = self._get_cached(tenant_id)
                if cached is None:
                    cached = await self._build_client(db, tenant_id)
                    if cached is None:
                        return self.default_client
                    self._cache[tenant_id] = cached

        if not has_quota(db, cached.client.config_id, now):
            logger.warning(
                "Tenant push quota exhausted, using default client",
                extra=build_log_context(tenant_id=tenant_id),
            )
            return self.default_client
        return cached.client

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_to_tokens(
        self,
        db: Session,
        client: PushClient,
        request: MulticastRequest,
    ) -> MulticastResult:
        """
        Send one message to up to `batch_size` tokens.

        Per-token failures come back in the result. Dead tokens are
        deactivated; tenant counters grow by the number of tokens attempted.
        """
        if len(request.tokens) > self.batch_size:
            raise ValidationError(
                f"At most {self.batch_size} tokens per send; got {len(request.tokens)}"
            )
        tokens = list(dict.fromkeys(t for t in request.tokens if t))
        if not tokens:
            return MulticastResult()

        message = build_message(client, request)
        timeout = request.timeout or self.send_timeout
        try:
            with anyio.fail_after(timeout):
                responses = await client.provider.send_multicast(tokens, message)
            result = MulticastResult.from_responses(responses)
        except TimeoutError:
            logger.warning(
                "Push send timed out after %.1fs for %d tokens",
                timeout,
                len(tokens),
                extra=build_log_context(tenant_id=client.tenant_id),
            )
            result = MulticastResult.failed_batch(
                tokens, DeliveryError("Push provider timed out", code="TIMEOUT")
            )
        except Exception as e:
            logger.exception(
                "Push provider error",
                extra=build_log_context(tenant_id=client.tenant_id, client=client.provider.name),
            )
            result = MulticastResult.failed_batch(
                tokens, DeliveryError(f"Push provider error: {type(e).__name__}")
            )

        if not client.is_default:
            increment_send_counters(db, client.config_id, len(tokens))

        if result.invalid_tokens:
            deactivated = donor_service.deactivate_device_tokens(db, result.invalid_tokens)
            logger.info("Deactivated %d invalid device tokens", deactivated)

        logger.info(
            "Push multicast: %d sent, %d failed",
            result.success_count,
            result.failure_count,
            extra=build_log_context(
                tenant_id=client.tenant_id,
                client="default" if client.is_default else "tenant",
            ),
        )
        return result

    async def send_to_token(
        self,
        db: Session,
        client: PushClient,
        token: str,
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        notification_type: str | None = None,
    ) -> SendResult:
        result = await self.send_to_tokens(
            db,
            client,
            MulticastRequest(
                tokens=[token],
                title=title,
                body=body,
                data=data or {},
                priority=priority,
                notification_type=notification_type,
            ),
        )
        if not result.responses:
            raise ValidationError("token is required")
        return result.responses[0]

    def topic_name(self, client: PushClient, topic: str) -> str:
        """Tenant topics are namespaced so tenants never share subscribers."""
        if client.is_default:
            return topic
        return f"{client.tenant_id}_{topic}"

    async def send_to_topic(
        self,
        db: Session,
        client: PushClient,
        topic: str,
        *,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        notification_type: str | None = None,
    ) -> SendResult:
        if not topic:
            raise ValidationError("topic is required")
        target = self.topic_name(client, topic)
        message = build_message(
            client,
            MulticastRequest(
                tokens=[],
                title=title,
                body=body,
                data=data or {},
                priority=priority,
                notification_type=notification_type,
            ),
        )
        try:
            with anyio.fail_after(self.send_timeout):
                result = await client.provider.send_to_topic(target, message)
        except TimeoutError:
            logger.warning(
                "Push topic send timed out after %.1fs",
                self.send_timeout,
                extra=build_log_context(tenant_id=client.tenant_id),
            )
            result = SendResult(
                token=target,
                success=False,
                error=DeliveryError("Push provider timed out", code="TIMEOUT"),
            )
        except Exception as e:
            logger.exception(
                "Push provider error on topic send",
                extra=build_log_context(tenant_id=client.tenant_id, client=client.provider.name),
            )
            result = SendResult(
                token=target,
                success=False,
                error=DeliveryError(f"Push provider error: {type(e).__name__}"),
            )

        if not client.is_default:
            increment_send_counters(db, client.config_id, 1)
        return result


_gateway: TenantPushGateway | None = None


def get_push_gateway() -> TenantPushGateway:
    """Process-wide gateway."""
    global _gateway
    if _gateway is None:
        _gateway = TenantPushGateway()
    return _gateway


def set_push_gateway(gateway: TenantPushGateway | None) -> None:
    global _gateway
    _gateway = gateway
