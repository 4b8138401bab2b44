"""
Notification service - persists in-app notifications and fans out push.

The Notification row is the durable record. Push delivery is attempted
after the rows are committed and is best-effort: a push failure marks
rows FAILED but never removes them.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    PersistenceError,
    ValidationError,
)
from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import (
    DeliveryStatus,
    DonorNotificationStatus,
    DonorNotificationType,
    NotificationChannel,
    NotificationPriority,
    NotificationType,
    UrgencyLevel,
)
from lifelink.db.models import BloodRequisition, DonorNotification, Notification
from lifelink.services import cache_service, donor_service, requisition_service
from lifelink.services.push_gateway import MulticastRequest, TenantPushGateway, get_push_gateway
from lifelink.services.push_provider import MulticastResult
from lifelink.utils.datetime_utils import as_utc, utc_now
from lifelink.utils.pagination import PaginatedResponse, PaginationParams, paginate_query

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (NotificationChannel.PUSH, NotificationChannel.IN_APP)
REQUISITION_ENTITY_TYPE = "BloodRequisition"


@dataclass
class DispatchRequest:
    """One notification for a set of recipients within a tenant."""

    recipient_ids: list[UUID]
    type: NotificationType
    title: str
    message: str
    tenant_id: UUID | None = None
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    channels: tuple[NotificationChannel, ...] = DEFAULT_CHANNELS
    expires_at: datetime | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None


@dataclass
class DispatchResult:
    notifications_sent: int = 0
    failures: int = 0
    no_channel: int = 0
    invalid_tokens: list[str] = field(default_factory=list)
    notification_ids: list[UUID] = field(default_factory=list)
    statuses: dict[UUID, DeliveryStatus] = field(default_factory=dict)


def _chunks(items: list[str], size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _json_safe(data: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(data, default=str))


class NotificationDispatcher:
    """Creates notification rows and delivers them through the tenant gateway."""

    def __init__(self, gateway: TenantPushGateway | None = None):
        self._gateway = gateway

    @property
    def gateway(self) -> TenantPushGateway:
        if self._gateway is None:
            self._gateway = get_push_gateway()
        return self._gateway

    async def dispatch(self, db: Session, request: DispatchRequest) -> DispatchResult:
        """
        Persist one Notification per recipient, then push to their devices.

        Raises ValidationError for an empty recipient list and
        PersistenceError if the rows cannot be written (nothing is kept).
        """
        recipients = list(dict.fromkeys(request.recipient_ids))
        if not recipients:
            raise ValidationError("At least one recipient is required")

        rows = self._create_rows(db, request, recipients)
        result = DispatchResult(notification_ids=[row.id for row in rows])
        log_context = build_log_context(tenant_id=request.tenant_id)

        if NotificationChannel.PUSH in request.channels:
            try:
                await self._deliver(db, request, rows, result)
            except Exception:
                db.rollback()
                logger.exception("Push delivery failed; notifications kept", extra=log_context)
        else:
            self._mark_in_app_only(db, rows, result)

        cache_service.invalidate_user_notifications(recipients)
        logger.info(
            "Dispatched %s: %d sent, %d failed, %d without device",
            request.type.value,
            result.notifications_sent,
            result.failures,
            result.no_channel,
            extra=log_context,
        )
        return result

    def _create_rows(
        self,
        db: Session,
        request: DispatchRequest,
        recipients: list[UUID],
    ) -> list[Notification]:
        data = _json_safe(request.data)
        channels = [c.value for c in request.channels]
        try:
            rows = [
                Notification(
                    organization_id=request.tenant_id,
                    recipient_id=recipient_id,
                    type=request.type.value,
                    title=request.title,
                    message=request.message,
                    data=data,
                    priority=request.priority.value,
                    channels=channels,
                    status=DeliveryStatus.PENDING.value,
                    expires_at=request.expires_at,
                    related_entity_type=request.related_entity_type,
                    related_entity_id=request.related_entity_id,
                )
                for recipient_id in recipients
            ]
            db.add_all(rows)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Notification persistence failed: %s", type(exc).__name__)
            raise PersistenceError("Failed to create notifications") from exc
        return rows

    def _mark_in_app_only(self, db: Session, rows: list[Notification], result: DispatchResult) -> None:
        now = utc_now()
        for row in rows:
            row.status = DeliveryStatus.SENT.value
            row.sent_at = now
            result.statuses[row.recipient_id] = DeliveryStatus.SENT
        result.notifications_sent = len(rows)
        db.commit()

    async def _deliver(
        self,
        db: Session,
        request: DispatchRequest,
        rows: list[Notification],
        result: DispatchResult,
    ) -> None:
        recipients = [row.recipient_id for row in rows]
        tokens_by_user = donor_service.get_active_device_tokens(db, recipients)
        tokens = list(
            dict.fromkeys(t for user_id in recipients for t in tokens_by_user.get(user_id, []))
        )

        aggregate = MulticastResult()
        if tokens:
            client = await self.gateway.resolve_client(db, request.tenant_id)
            for batch in _chunks(tokens, self.gateway.batch_size):
                aggregate.merge(
                    await self.gateway.send_to_tokens(
                        db,
                        client,
                        MulticastRequest(
                            tokens=batch,
                            title=request.title,
                            body=request.message,
                            data=request.data,
                            priority=request.priority,
                            notification_type=request.type.value,
                        ),
                    )
                )

        errors = {r.token: r.error for r in aggregate.responses if r.error is not None}
        succeeded = aggregate.succeeded_tokens
        now = utc_now()
        for row in rows:
            user_tokens = tokens_by_user.get(row.recipient_id, [])
            if not user_tokens:
                row.status = DeliveryStatus.NO_DEVICE.value
                result.no_channel += 1
            elif any(t in succeeded for t in user_tokens):
                row.status = DeliveryStatus.SENT.value
                row.sent_at = now
                row.delivery_attempts += 1
                result.notifications_sent += 1
            else:
                row.status = DeliveryStatus.FAILED.value
                row.delivery_attempts += 1
                error = next((errors[t] for t in user_tokens if t in errors), None)
                row.failure_reason = (str(error) if error else "Push delivery failed")[:255]
                result.failures += 1
            result.statuses[row.recipient_id] = DeliveryStatus(row.status)

        result.invalid_tokens = list(aggregate.invalid_tokens)
        db.commit()


_dispatcher: NotificationDispatcher | None = None


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


# =============================================================================
# LifeLink flows
# =============================================================================


@dataclass
class EmergencyNotificationResult:
    requisition_id: UUID
    donor_notifications: int
    dispatch: DispatchResult


def build_emergency_content(
    requisition: BloodRequisition,
    custom_message: str | None = None,
) -> tuple[str, str, NotificationPriority]:
    """Title, message and priority for a requisition alert."""
    title = f"URGENT: {requisition.required_blood_group} Blood Needed"
    message = (
        f"Emergency blood request for {requisition.patient_name} at "
        f"{requisition.hospital_name}, {requisition.location}"
    )
    if custom_message:
        message = f"{message}\n\nMessage: {custom_message}"
    priority = (
        NotificationPriority.EMERGENCY
        if requisition.urgency_level == UrgencyLevel.HIGH.value
        else NotificationPriority.HIGH
    )
    return title, message, priority


def _upsert_donor_notifications(
    db: Session,
    requisition: BloodRequisition,
    donor_ids: list[UUID],
    title: str,
    message: str,
    notification_type: DonorNotificationType,
) -> list[DonorNotification]:
    """One DonorNotification per (donor, requisition); re-sends reuse the row."""
    try:
        existing = {
            n.donor_id: n
            for n in db.query(DonorNotification).filter(
                DonorNotification.requisition_id == requisition.id,
                DonorNotification.donor_id.in_(donor_ids),
            )
        }
        rows = []
        for donor_id in donor_ids:
            row = existing.get(donor_id)
            if row is None:
                row = DonorNotification(donor_id=donor_id, requisition_id=requisition.id)
                db.add(row)
            row.title = title
            row.message = message
            row.notification_type = notification_type.value
            row.status = DonorNotificationStatus.PENDING.value
            rows.append(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Failed to create donor notifications") from exc
    return rows


async def send_emergency_notification(
    db: Session,
    requisition: BloodRequisition,
    donor_ids: list[UUID],
    custom_message: str | None = None,
    notification_type: DonorNotificationType = DonorNotificationType.EMERGENCY,
    *,
    dispatcher: NotificationDispatcher | None = None,
) -> EmergencyNotificationResult:
    """Alert donors about an active requisition and track per-donor delivery."""
    requisition_service.ensure_accepting_responses(requisition)
    donor_ids = list(dict.fromkeys(donor_ids))
    if not donor_ids:
        raise ValidationError("At least one donor is required")

    title, message, priority = build_emergency_content(requisition, custom_message)
    donor_rows = _upsert_donor_notifications(
        db, requisition, donor_ids, title, message, notification_type
    )

    notification_kind = (
        NotificationType.LIFELINK_BROADCAST
        if notification_type == DonorNotificationType.BROADCAST
        else NotificationType.LIFELINK_EMERGENCY
    )
    dispatch = await (dispatcher or get_dispatcher()).dispatch(
        db,
        DispatchRequest(
            recipient_ids=donor_ids,
            type=notification_kind,
            title=title,
            message=message,
            tenant_id=requisition.organization_id,
            data={
                "requisition_id": str(requisition.id),
                "patient_name": requisition.patient_name,
                "hospital_name": requisition.hospital_name,
                "required_blood_group": requisition.required_blood_group,
                "urgency_level": requisition.urgency_level,
                "location": requisition.location,
                "is_lifelink_emergency": True,
            },
            priority=priority,
            expires_at=requisition.expires_at,
            related_entity_type=REQUISITION_ENTITY_TYPE,
            related_entity_id=requisition.id,
        ),
    )

    now = utc_now()
    for row in donor_rows:
        status = dispatch.statuses.get(row.donor_id)
        if status == DeliveryStatus.SENT:
            row.status = DonorNotificationStatus.SENT.value
            row.sent_at = now
        elif status in (DeliveryStatus.FAILED, DeliveryStatus.NO_DEVICE):
            row.status = DonorNotificationStatus.FAILED.value
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to update donor notification status",
            extra=build_log_context(requisition_id=requisition.id),
        )

    return EmergencyNotificationResult(
        requisition_id=requisition.id,
        donor_notifications=len(donor_rows),
        dispatch=dispatch,
    )


async def broadcast_to_available_donors(
    db: Session,
    requisition: BloodRequisition,
    *,
    location: str | None = None,
    limit: int | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> EmergencyNotificationResult | None:
    """Find eligible compatible donors and alert them. None when nobody matches."""
    requisition_service.ensure_accepting_responses(requisition)
    donors = donor_service.find_available_donors(
        db,
        requisition.required_blood_group,
        location=location,
        limit=limit or settings.DONOR_BROADCAST_LIMIT,
        org_id=requisition.organization_id,
    )
    donor_ids = [d.id for d in donors if d.id != requisition.requester_id]
    if not donor_ids:
        logger.info(
            "No available donors for broadcast",
            extra=build_log_context(requisition_id=requisition.id),
        )
        return None

    custom_message = (
        f"EMERGENCY BROADCAST: {requisition.required_blood_group} blood needed urgently "
        f"in {requisition.location}. Your help can save a life!"
    )
    return await send_emergency_notification(
        db,
        requisition,
        donor_ids,
        custom_message,
        DonorNotificationType.BROADCAST,
        dispatcher=dispatcher,
    )


async def send_donation_reminder(
    db: Session,
    donor_ids: list[UUID],
    *,
    org_id: UUID | None = None,
    message: str | None = None,
    data: dict[str, Any] | None = None,
    dispatcher: NotificationDispatcher | None = None,
) -> DispatchResult:
    return await (dispatcher or get_dispatcher()).dispatch(
        db,
        DispatchRequest(
            recipient_ids=donor_ids,
            type=NotificationType.LIFELINK_REMINDER,
            title="Blood Donation Eligible",
            message=message or "You are now eligible to donate blood again!",
            tenant_id=org_id,
            data={"is_lifelink_reminder": True, **(data or {})},
            priority=NotificationPriority.MEDIUM,
        ),
    )


# =============================================================================
# In-app reads
# =============================================================================


def _serialize(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "priority": notification.priority,
        "status": notification.status,
        "read_at": as_utc(notification.read_at).isoformat() if notification.read_at else None,
        "sent_at": as_utc(notification.sent_at).isoformat() if notification.sent_at else None,
        "created_at": as_utc(notification.created_at).isoformat(),
        "related_entity_type": notification.related_entity_type,
        "related_entity_id": (
            str(notification.related_entity_id) if notification.related_entity_id else None
        ),
    }


def _visible(query, now: datetime):
    return query.filter(or_(Notification.expires_at.is_(None), Notification.expires_at >= now))


def get_unread_count(db: Session, user_id: UUID, now: datetime | None = None) -> int:
    key = cache_service.user_notifications_key(user_id, "unread")
    cached = cache_service.get_json(key)
    if cached is not None:
        return int(cached)

    now = as_utc(now) if now else utc_now()
    count = _visible(
        db.query(Notification).filter(
            Notification.recipient_id == user_id,
            Notification.read_at.is_(None),
        ),
        now,
    ).count()
    cache_service.set_json(key, count)
    return count


def get_user_notifications(
    db: Session,
    user_id: UUID,
    *,
    unread_only: bool = False,
    notification_type: NotificationType | None = None,
    pagination: PaginationParams | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Paginated, unexpired notifications for a user (cached)."""
    pagination = pagination or PaginationParams()
    type_value = notification_type.value if notification_type else "all"
    key = cache_service.user_notifications_key(
        user_id,
        f"list:{pagination.page}:{pagination.per_page}:{int(unread_only)}:{type_value}",
    )
    cached = cache_service.get_json(key)
    if cached is not None:
        return cached

    now = as_utc(now) if now else utc_now()
    query = _visible(db.query(Notification).filter(Notification.recipient_id == user_id), now)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    if notification_type:
        query = query.filter(Notification.type == notification_type.value)
    query = query.order_by(Notification.created_at.desc())

    items, total = paginate_query(query, pagination)
    page = PaginatedResponse.create([_serialize(n) for n in items], total, pagination)
    payload = {
        "items": page.items,
        "total": page.total,
        "page": page.page,
        "per_page": page.per_page,
        "pages": page.pages,
        "has_next": page.has_next,
        "has_prev": page.has_prev,
        "unread": get_unread_count(db, user_id, now),
    }
    cache_service.set_json(key, payload)
    return payload


def mark_as_read(db: Session, notification_id: UUID, user_id: UUID) -> Notification:
    notification = db.get(Notification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.recipient_id != user_id:
        raise PermissionDeniedError("Not allowed to mark this notification as read")
    if notification.read_at:
        return notification

    notification.read_at = utc_now()
    db.commit()
    db.refresh(notification)
    cache_service.invalidate_user_notifications([user_id])
    return notification


def mark_all_as_read(db: Session, user_id: UUID) -> int:
    result = db.execute(
        update(Notification)
        .where(Notification.recipient_id == user_id, Notification.read_at.is_(None))
        .values(read_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    cache_service.invalidate_user_notifications([user_id])
    return result.rowcount or 0


# =============================================================================
# Donor inbox
# =============================================================================


def _serialize_donor_notification(row: DonorNotification, now: datetime) -> dict[str, Any]:
    req = row.requisition
    return {
        "id": str(row.id),
        "title": row.title,
        "message": row.message,
        "status": row.status,
        "notification_type": row.notification_type,
        "created_at": as_utc(row.created_at).isoformat(),
        "read_at": as_utc(row.read_at).isoformat() if row.read_at else None,
        "requisition": {
            "id": str(req.id),
            "patient_name": req.patient_name,
            "hospital_name": req.hospital_name,
            "required_blood_group": req.required_blood_group,
            "units_needed": req.units_needed,
            "urgency_level": req.urgency_level,
            "location": req.location,
            "required_by_date": as_utc(req.required_by_date).isoformat(),
            "status": req.status,
            "allow_contact_reveal": req.allow_contact_reveal,
            "is_expired": as_utc(req.required_by_date) < now,
        },
    }


def get_donor_notifications(
    db: Session,
    donor_id: UUID,
    *,
    status: DonorNotificationStatus | None = None,
    pagination: PaginationParams | None = None,
    now: datetime | None = None,
) -> PaginatedResponse[dict[str, Any]]:
    """A donor's requisition alerts, newest first, hiding expired requisitions."""
    pagination = pagination or PaginationParams()
    now = as_utc(now) if now else utc_now()
    query = (
        db.query(DonorNotification)
        .join(BloodRequisition, BloodRequisition.id == DonorNotification.requisition_id)
        .filter(
            DonorNotification.donor_id == donor_id,
            BloodRequisition.expires_at >= now,
        )
    )
    if status:
        query = query.filter(DonorNotification.status == status.value)
    query = query.order_by(DonorNotification.created_at.desc())

    items, total = paginate_query(query, pagination)
    return PaginatedResponse.create(
        [_serialize_donor_notification(row, now) for row in items], total, pagination
    )


def mark_donor_notification_read(
    db: Session,
    notification_id: UUID,
    donor_id: UUID,
) -> DonorNotification:
    notification = db.get(DonorNotification, notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.donor_id != donor_id:
        raise PermissionDeniedError("You can only mark your own notifications as read")
    if notification.read_at:
        return notification

    notification.read_at = utc_now()
    db.commit()
    db.refresh(notification)
    return notification


def cleanup_old_notifications(
    db: Session,
    days_old: int | None = None,
    now: datetime | None = None,
) -> int:
    """Delete notifications older than the retention window that are read or expired."""
    now = as_utc(now) if now else utc_now()
    cutoff = now - timedelta(days=days_old or settings.NOTIFICATION_RETENTION_DAYS)
    deleted = (
        db.query(Notification)
        .filter(
            Notification.created_at < cutoff,
            or_(Notification.read_at.is_not(None), Notification.expires_at < now),
        )
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info("Cleaned up %d old notifications", deleted)
    return deleted
