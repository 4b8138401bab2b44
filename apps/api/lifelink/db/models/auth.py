"""SQLAlchemy ORM models for tenants, users (donor profiles) and devices."""

from __future__ import annotations

from typing import TYPE_CHECKING

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifelink.db.base import Base
from lifelink.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from lifelink.db.models.notifications import TenantPushConfig


class Organization(Base):
    """
    A tenant in the multi-tenant deployment.

    Push credentials, quotas and notification branding are isolated per
    organization; every LifeLink entity is scoped by organization_id.
    """

    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    tenant_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    push_config: Mapped["TenantPushConfig | None"] = relationship(
        back_populates="organization", uselist=False, cascade="all, delete-orphan"
    )


class User(Base):
    """
    A portal member. Carries the donor profile used by LifeLink.

    Users are never deleted, only deactivated (is_active=False).
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("idx_users_donor_lookup", "organization_id", "is_blood_donor", "blood_group"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Donor profile
    blood_group: Mapped[str | None] = mapped_column(String(3), nullable=True)
    is_blood_donor: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_donation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_donations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_units_donated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    show_phone: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    organization: Mapped["Organization | None"] = relationship()
    device_tokens: Mapped[list["DeviceToken"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class DeviceToken(Base):
    """Push channel identifier registered by a user's device."""

    __tablename__ = "user_device_tokens"
    __table_args__ = (
        UniqueConstraint("user_id", "token", name="uq_device_token_user_token"),
        Index("idx_device_tokens_active", "user_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    token: Mapped[str] = mapped_column(String(512), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    device_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    app_version: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    invalid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_used_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    user: Mapped["User"] = relationship(back_populates="device_tokens")
