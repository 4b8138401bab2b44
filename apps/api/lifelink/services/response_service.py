"""
Response service - donor responses to requisitions.

Donors answer either directly (from a requisition) or from a donor
notification. Contact details are revealed to the requester only for
WILLING responses where both the requisition and the donor allow it; the
decision is stored with the response and never recomputed. The requester
is notified from a background job so the donor's call does not wait on
push delivery.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.errors import (
    AlreadyRespondedError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import DonorResponseType, JobType, NotificationPriority, NotificationType
from lifelink.db.models import BloodRequisition, DonorNotification, DonorResponse, User
from lifelink.services import job_service, requisition_service
from lifelink.services.notification_service import (
    DispatchRequest,
    DispatchResult,
    NotificationDispatcher,
    get_dispatcher,
)
from lifelink.utils.datetime_utils import as_utc, utc_now

logger = logging.getLogger(__name__)

POLICY_REJECT = "reject"
POLICY_LEGACY = "legacy"


def duplicate_policy() -> str:
    policy = (settings.RESPONSE_DUPLICATE_POLICY or POLICY_REJECT).strip().lower()
    if policy not in (POLICY_REJECT, POLICY_LEGACY):
        raise ValueError(f"Unknown RESPONSE_DUPLICATE_POLICY: {policy}")
    return policy


def _parse_response(value: DonorResponseType | str) -> DonorResponseType:
    try:
        return DonorResponseType(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"Invalid response: {value!r}")


def resolve_contact_reveal(
    requisition: BloodRequisition,
    donor: User,
    response: DonorResponseType,
) -> tuple[bool, str | None]:
    """(is_contact_revealed, contact_phone) for a new response."""
    revealed = (
        response == DonorResponseType.WILLING
        and requisition.allow_contact_reveal
        and donor.show_phone
        and bool(donor.phone)
    )
    return (True, donor.phone) if revealed else (False, None)


def _record_response(
    db: Session,
    requisition: BloodRequisition,
    donor: User,
    response: DonorResponseType | str,
    message: str | None,
    *,
    allow_overwrite: bool,
    now: datetime | None,
) -> DonorResponse:
    response_type = _parse_response(response)
    requisition_service.ensure_accepting_responses(requisition, now)
    if donor.id == requisition.requester_id:
        raise ValidationError("You cannot respond to your own requisition")
    if not donor.is_active:
        raise PermissionDeniedError("Inactive users cannot respond")

    existing = (
        db.query(DonorResponse)
        .filter(
            DonorResponse.donor_id == donor.id,
            DonorResponse.requisition_id == requisition.id,
        )
        .first()
    )
    if existing and not allow_overwrite:
        raise AlreadyRespondedError(existing.response, existing.responded_at)

    revealed, phone = resolve_contact_reveal(requisition, donor, response_type)
    record = existing or DonorResponse(
        organization_id=requisition.organization_id,
        donor_id=donor.id,
        requisition_id=requisition.id,
    )
    record.response = response_type.value
    record.message = message
    record.is_contact_revealed = revealed
    record.contact_phone = phone
    record.responded_at = as_utc(now) if now else utc_now()
    if existing is None:
        db.add(record)

    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent response from the same donor
        db.rollback()
        raise AlreadyRespondedError(response_type.value)
    db.refresh(record)

    logger.info(
        "Donor response %s recorded",
        response_type.value,
        extra=build_log_context(
            tenant_id=requisition.organization_id, requisition_id=requisition.id
        ),
    )
    _enqueue_requester_notification(db, record)
    return record


def _enqueue_requester_notification(db: Session, record: DonorResponse) -> None:
    try:
        job_service.schedule_job(
            db,
            record.organization_id,
            JobType.REQUESTER_NOTIFICATION,
            {"response_id": str(record.id)},
            idempotency_key=(
                f"requester_notification:{record.id}:{as_utc(record.responded_at).isoformat()}"
            ),
        )
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to enqueue requester notification",
            extra=build_log_context(requisition_id=record.requisition_id),
        )


def respond_to_requisition(
    db: Session,
    requisition_id: UUID,
    donor_id: UUID,
    response: DonorResponseType | str,
    message: str | None = None,
    *,
    org_id: UUID | None = None,
    now: datetime | None = None,
) -> DonorResponse:
    """Direct path: a donor answers a requisition they found. Duplicates are rejected."""
    requisition = requisition_service.get_requisition(db, requisition_id, org_id)
    donor = db.get(User, donor_id)
    if not donor:
        raise NotFoundError("Donor not found")
    return _record_response(
        db, requisition, donor, response, message, allow_overwrite=False, now=now
    )


def respond_to_notification(
    db: Session,
    donor_notification_id: UUID,
    donor_id: UUID,
    response: DonorResponseType | str,
    message: str | None = None,
    *,
    now: datetime | None = None,
) -> DonorResponse:
    """
    Notification path: a donor answers the alert they received.

    Under the "legacy" duplicate policy a second answer overwrites the
    first; under "reject" it raises AlreadyRespondedError.
    """
    notification = db.get(DonorNotification, donor_notification_id)
    if not notification:
        raise NotFoundError("Notification not found")
    if notification.donor_id != donor_id:
        raise PermissionDeniedError("This notification belongs to another donor")

    record = _record_response(
        db,
        notification.requisition,
        notification.donor,
        response,
        message,
        allow_overwrite=duplicate_policy() == POLICY_LEGACY,
        now=now,
    )
    if notification.read_at is None:
        notification.read_at = utc_now()
        db.commit()
    return record


def retract_response(
    db: Session,
    requisition_id: UUID,
    donor_id: UUID,
    *,
    now: datetime | None = None,
) -> None:
    """Withdraw a response while the requisition is open, so the donor can answer again."""
    record = (
        db.query(DonorResponse)
        .filter(
            DonorResponse.donor_id == donor_id,
            DonorResponse.requisition_id == requisition_id,
        )
        .first()
    )
    if not record:
        raise NotFoundError("Response not found")
    requisition_service.ensure_accepting_responses(record.requisition, now)
    db.delete(record)
    db.commit()
    logger.info("Donor response retracted", extra=build_log_context(requisition_id=requisition_id))


@dataclass
class WillingDonor:
    donor_id: UUID
    name: str
    blood_group: str | None
    message: str | None
    responded_at: datetime
    is_contact_revealed: bool
    contact_phone: str | None


def get_willing_donors(
    db: Session,
    requisition_id: UUID,
    requester_id: UUID,
    org_id: UUID | None = None,
) -> list[WillingDonor]:
    """WILLING responders for the requester; phone only where it was revealed."""
    requisition = requisition_service.get_owned_requisition(db, requisition_id, requester_id, org_id)
    rows = (
        db.query(DonorResponse, User)
        .join(User, User.id == DonorResponse.donor_id)
        .filter(
            DonorResponse.requisition_id == requisition.id,
            DonorResponse.response == DonorResponseType.WILLING.value,
        )
        .order_by(DonorResponse.responded_at.asc())
        .all()
    )
    return [
        WillingDonor(
            donor_id=donor.id,
            name=donor.full_name,
            blood_group=donor.blood_group,
            message=record.message,
            responded_at=record.responded_at,
            is_contact_revealed=record.is_contact_revealed,
            contact_phone=record.contact_phone if record.is_contact_revealed else None,
        )
        for record, donor in rows
    ]


# =============================================================================
# Requester notification
# =============================================================================


def build_requester_message(
    record: DonorResponse,
    donor: User,
    requisition: BloodRequisition,
) -> tuple[str, str, NotificationPriority]:
    """Title, message and priority telling the requester how a donor answered."""
    response = DonorResponseType(record.response)
    if response == DonorResponseType.WILLING:
        message = (
            f"{donor.full_name} ({donor.blood_group}) is willing to help with your "
            f"blood request for {requisition.patient_name}"
        )
        if record.is_contact_revealed and record.contact_phone:
            message += f". Contact: {record.contact_phone}"
        return "Donor Found!", message, NotificationPriority.HIGH

    if response == DonorResponseType.NOT_AVAILABLE:
        message = (
            f"{donor.full_name} received your blood request but is currently "
            "not available to donate"
        )
    else:
        message = f"{donor.full_name} received your blood request but cannot donate at this time"
    return "Response Received", message, NotificationPriority.MEDIUM


async def notify_requester_of_response(
    db: Session,
    response_id: UUID,
    *,
    dispatcher: NotificationDispatcher | None = None,
) -> DispatchResult | None:
    """Send the requester an in-app + push notification about a response."""
    record = db.get(DonorResponse, response_id)
    if not record:
        # Retracted before the job ran
        logger.info("Response %s no longer exists; skipping requester notification", response_id)
        return None

    requisition = record.requisition
    donor = record.donor
    title, message, priority = build_requester_message(record, donor, requisition)
    return await (dispatcher or get_dispatcher()).dispatch(
        db,
        DispatchRequest(
            recipient_ids=[requisition.requester_id],
            type=NotificationType.LIFELINK_RESPONSE,
            title=title,
            message=message,
            tenant_id=requisition.organization_id,
            data={
                "requisition_id": str(requisition.id),
                "donor_id": str(donor.id),
                "donor_name": donor.full_name,
                "donor_blood_group": donor.blood_group,
                "response": record.response,
                "contact_revealed": record.is_contact_revealed,
                "donor_phone": record.contact_phone if record.is_contact_revealed else None,
            },
            priority=priority,
            related_entity_type="BloodRequisition",
            related_entity_id=requisition.id,
        ),
    )
