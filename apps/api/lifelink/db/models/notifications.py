"""SQLAlchemy ORM models for in-app notifications and tenant push config."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifelink.db.base import Base
from lifelink.db.enums import DeliveryStatus, NotificationPriority
from lifelink.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from lifelink.db.models.auth import Organization, User


class Notification(Base):
    """
    In-app notification for one recipient.

    The row is the durable record; push delivery is tracked on it
    (status/sent_at/failure_reason) but never required for it to exist.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        Index("idx_notif_recipient_unread", "recipient_id", "read_at", "created_at"),
        Index("idx_notif_related", "related_entity_type", "related_entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    recipient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    priority: Mapped[str] = mapped_column(
        String(20), default=NotificationPriority.MEDIUM.value, nullable=False
    )
    channels: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Push delivery tracking
    status: Mapped[str] = mapped_column(
        String(20), default=DeliveryStatus.PENDING.value, nullable=False
    )
    delivery_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Entity reference (for click-through)
    related_entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    recipient: Mapped["User"] = relationship()


class TenantPushConfig(Base):
    """
    Per-tenant push provider credentials and send quotas.

    private_key_encrypted holds ``ivHex:cipherHex``; it is never returned
    by read paths. Counters reset lazily on the first send after a
    day/month boundary.
    """

    __tablename__ = "tenant_push_configs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    # Provider credentials
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    private_key_encrypted: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Branding
    default_icon: Mapped[str | None] = mapped_column(String(500), nullable=True)
    default_badge: Mapped[str | None] = mapped_column(String(500), nullable=True)
    default_sound: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Quotas
    daily_limit: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    monthly_limit: Mapped[int] = mapped_column(Integer, default=30000, nullable=False)
    daily_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_sent: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_daily_reset: Mapped[datetime | None] = mapped_column(nullable=True)
    last_monthly_reset: Mapped[datetime | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_configured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_tested_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    updated_by_user_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    organization: Mapped["Organization"] = relationship(back_populates="push_config")
