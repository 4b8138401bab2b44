"""SQLAlchemy ORM models for LifeLink requisitions, donations and responses."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lifelink.db.base import Base
from lifelink.db.enums import (
    DonorNotificationStatus,
    DonorNotificationType,
    RequisitionStatus,
    UrgencyLevel,
)
from lifelink.db.models.auth import User
from lifelink.utils.datetime_utils import utc_now


class BloodDonation(Base):
    """A recorded donation; drives donor counters and the cooldown."""

    __tablename__ = "blood_donations"
    __table_args__ = (Index("idx_blood_donations_donor", "donor_id", "donation_date"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    donation_date: Mapped[date] = mapped_column(Date, nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    units: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    donor: Mapped["User"] = relationship()


class BloodRequisition(Base):
    """
    Emergency request for blood of a specific group.

    Status changes only through requisition_service (state machine);
    every other field is immutable after creation.
    """

    __tablename__ = "blood_requisitions"
    __table_args__ = (
        Index("idx_requisitions_org_status", "organization_id", "status", "expires_at"),
        Index("idx_requisitions_requester", "requester_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    requester_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    patient_name: Mapped[str] = mapped_column(String(255), nullable=False)
    hospital_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    alternate_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    medical_condition: Mapped[str | None] = mapped_column(Text, nullable=True)
    additional_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    required_blood_group: Mapped[str] = mapped_column(String(3), nullable=False)
    units_needed: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    urgency_level: Mapped[str] = mapped_column(
        String(10), default=UrgencyLevel.HIGH.value, nullable=False
    )
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    required_by_date: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    allow_contact_reveal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=RequisitionStatus.ACTIVE.value, nullable=False
    )

    # Set when this requisition was created by reusing an expired one
    reused_from_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("blood_requisitions.id", ondelete="SET NULL"), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        default=utc_now, onupdate=utc_now, nullable=False
    )

    requester: Mapped["User"] = relationship()
    responses: Mapped[list["DonorResponse"]] = relationship(
        back_populates="requisition", cascade="all, delete-orphan"
    )
    donor_notifications: Mapped[list["DonorNotification"]] = relationship(
        back_populates="requisition", cascade="all, delete-orphan"
    )


class DonorNotification(Base):
    """
    A requisition as delivered to one donor.

    Unique per (donor, requisition): re-dispatching updates the existing row.
    """

    __tablename__ = "donor_notifications"
    __table_args__ = (
        UniqueConstraint("donor_id", "requisition_id", name="uq_donor_notification_pair"),
        Index("idx_donor_notifications_donor", "donor_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requisition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("blood_requisitions.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[str] = mapped_column(
        String(20), default=DonorNotificationType.EMERGENCY.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=DonorNotificationStatus.PENDING.value, nullable=False
    )
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    donor: Mapped["User"] = relationship()
    requisition: Mapped["BloodRequisition"] = relationship(back_populates="donor_notifications")


class DonorResponse(Base):
    """
    A donor's answer to a requisition. Unique per (donor, requisition).

    is_contact_revealed is only true for WILLING responses where both the
    requisition and the donor allow contact sharing.
    """

    __tablename__ = "donor_responses"
    __table_args__ = (
        UniqueConstraint("donor_id", "requisition_id", name="uq_donor_response_pair"),
        Index("idx_donor_responses_requisition", "requisition_id", "response"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=True
    )
    donor_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    requisition_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("blood_requisitions.id", ondelete="CASCADE"), nullable=False
    )
    response: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_contact_revealed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    responded_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    donor: Mapped["User"] = relationship()
    requisition: Mapped["BloodRequisition"] = relationship(back_populates="responses")
