"""
Requisition service - blood requisition store and lifecycle.

Status changes go through `transition`; ACTIVE is the only non-terminal
state and a requisition never leaves a terminal state. Expired
requisitions can be reused, which creates a fresh ACTIVE requisition.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.errors import (
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    RequisitionNotActiveError,
    ValidationError,
)
from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import RequisitionStatus, UrgencyLevel
from lifelink.db.models import BloodRequisition
from lifelink.services import compatibility_service
from lifelink.utils.datetime_utils import as_utc, utc_now
from lifelink.utils.pagination import PaginatedResponse, PaginationParams, paginate_query

logger = logging.getLogger(__name__)


def compute_expires_at(required_by_date: datetime, now: datetime | None = None) -> datetime:
    """A requisition lives until it is needed, but never longer than the default TTL."""
    now = as_utc(now) if now else utc_now()
    cap = now + timedelta(days=settings.REQUISITION_DEFAULT_TTL_DAYS)
    return min(as_utc(required_by_date), cap)


def is_expired(requisition: BloodRequisition, now: datetime | None = None) -> bool:
    now = as_utc(now) if now else utc_now()
    return as_utc(requisition.expires_at) <= now


def _parse_urgency(value: UrgencyLevel | str) -> UrgencyLevel:
    try:
        return UrgencyLevel(value.upper() if isinstance(value, str) else value)
    except ValueError:
        raise ValidationError(f"Invalid urgency level: {value!r}")


# =============================================================================
# Store
# =============================================================================


def create_requisition(
    db: Session,
    *,
    requester_id: UUID,
    org_id: UUID | None,
    patient_name: str,
    hospital_name: str,
    required_blood_group: str,
    location: str,
    required_by_date: datetime,
    units_needed: int = 1,
    urgency_level: UrgencyLevel | str = UrgencyLevel.HIGH,
    contact_number: str | None = None,
    alternate_number: str | None = None,
    medical_condition: str | None = None,
    additional_notes: str | None = None,
    allow_contact_reveal: bool = True,
    reused_from_id: UUID | None = None,
    now: datetime | None = None,
) -> BloodRequisition:
    """Create an ACTIVE requisition. expires_at = min(required_by, now + TTL)."""
    now = as_utc(now) if now else utc_now()
    if not patient_name or not patient_name.strip():
        raise ValidationError("patient_name is required")
    if not hospital_name or not hospital_name.strip():
        raise ValidationError("hospital_name is required")
    if not location or not location.strip():
        raise ValidationError("location is required")
    if units_needed < 1:
        raise ValidationError("units_needed must be at least 1")
    if as_utc(required_by_date) <= now:
        raise ValidationError("required_by_date must be in the future")

    blood_group = compatibility_service.parse_blood_group(required_blood_group)
    urgency = _parse_urgency(urgency_level)

    requisition = BloodRequisition(
        organization_id=org_id,
        requester_id=requester_id,
        patient_name=patient_name.strip(),
        hospital_name=hospital_name.strip(),
        contact_number=contact_number,
        alternate_number=alternate_number,
        medical_condition=medical_condition,
        additional_notes=additional_notes,
        required_blood_group=blood_group.value,
        units_needed=units_needed,
        urgency_level=urgency.value,
        location=location.strip(),
        required_by_date=as_utc(required_by_date),
        expires_at=compute_expires_at(required_by_date, now),
        allow_contact_reveal=allow_contact_reveal,
        status=RequisitionStatus.ACTIVE.value,
        reused_from_id=reused_from_id,
    )
    db.add(requisition)
    db.commit()
    db.refresh(requisition)
    logger.info(
        "Requisition created",
        extra=build_log_context(tenant_id=org_id, requisition_id=requisition.id),
    )
    return requisition


def get_requisition(
    db: Session,
    requisition_id: UUID,
    org_id: UUID | None = None,
) -> BloodRequisition:
    """Fetch a requisition; other tenants' requisitions look missing."""
    query = db.query(BloodRequisition).filter(BloodRequisition.id == requisition_id)
    if org_id:
        query = query.filter(BloodRequisition.organization_id == org_id)
    requisition = query.first()
    if not requisition:
        raise NotFoundError("Requisition not found")
    return requisition


def get_owned_requisition(
    db: Session,
    requisition_id: UUID,
    requester_id: UUID,
    org_id: UUID | None = None,
) -> BloodRequisition:
    requisition = get_requisition(db, requisition_id, org_id)
    if requisition.requester_id != requester_id:
        raise PermissionDeniedError("Only the requester can manage this requisition")
    return requisition


def list_for_user(
    db: Session,
    requester_id: UUID,
    *,
    status: RequisitionStatus | None = None,
    pagination: PaginationParams | None = None,
) -> PaginatedResponse[BloodRequisition]:
    pagination = pagination or PaginationParams()
    query = db.query(BloodRequisition).filter(BloodRequisition.requester_id == requester_id)
    if status:
        query = query.filter(BloodRequisition.status == status.value)
    query = query.order_by(BloodRequisition.created_at.desc())
    items, total = paginate_query(query, pagination)
    return PaginatedResponse.create(items, total, pagination)


def discover_requisitions(
    db: Session,
    donor_blood_group: str,
    *,
    donor_id: UUID | None = None,
    org_id: UUID | None = None,
    location: str | None = None,
    pagination: PaginationParams | None = None,
    now: datetime | None = None,
) -> PaginatedResponse[BloodRequisition]:
    """Active, unexpired requisitions a donor of this group could help with."""
    now = as_utc(now) if now else utc_now()
    pagination = pagination or PaginationParams()
    recipients = compatibility_service.compatible_recipients(donor_blood_group)

    query = db.query(BloodRequisition).filter(
        BloodRequisition.status == RequisitionStatus.ACTIVE.value,
        BloodRequisition.expires_at > now,
        BloodRequisition.required_blood_group.in_([g.value for g in recipients]),
    )
    if donor_id:
        query = query.filter(BloodRequisition.requester_id != donor_id)
    if org_id:
        query = query.filter(BloodRequisition.organization_id == org_id)
    if location and location.strip():
        query = query.filter(BloodRequisition.location.ilike(f"%{location.strip()}%"))

    query = query.order_by(BloodRequisition.expires_at.asc())
    items, total = paginate_query(query, pagination)
    return PaginatedResponse.create(items, total, pagination)


# =============================================================================
# State machine
# =============================================================================


def transition(
    db: Session,
    requisition: BloodRequisition,
    new_status: RequisitionStatus,
) -> BloodRequisition:
    """
    Move an ACTIVE requisition to a terminal status.

    Raises InvalidTransitionError from any terminal status and for
    self-transitions. The UPDATE only matches a row that is still ACTIVE,
    so a concurrent close from another session wins and this call raises.
    """
    current = RequisitionStatus(requisition.status)
    if current.is_terminal or new_status == current:
        raise InvalidTransitionError(current.value, new_status.value)

    result = db.execute(
        update(BloodRequisition)
        .where(
            BloodRequisition.id == requisition.id,
            BloodRequisition.status == RequisitionStatus.ACTIVE.value,
        )
        .values(status=new_status.value)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(requisition)
    if result.rowcount == 0:
        raise InvalidTransitionError(requisition.status, new_status.value)

    logger.info(
        "Requisition %s -> %s",
        current.value,
        new_status.value,
        extra=build_log_context(
            tenant_id=requisition.organization_id, requisition_id=requisition.id
        ),
    )
    return requisition


def fulfill(db: Session, requisition: BloodRequisition) -> BloodRequisition:
    return transition(db, requisition, RequisitionStatus.FULFILLED)


def cancel(db: Session, requisition: BloodRequisition) -> BloodRequisition:
    return transition(db, requisition, RequisitionStatus.CANCELLED)


def expire(db: Session, requisition: BloodRequisition) -> BloodRequisition:
    return transition(db, requisition, RequisitionStatus.EXPIRED)


def expire_overdue_requisitions(
    db: Session,
    now: datetime | None = None,
    org_id: UUID | None = None,
) -> int:
    """Expire every ACTIVE requisition whose expires_at has passed."""
    now = as_utc(now) if now else utc_now()
    stmt = update(BloodRequisition).where(
        BloodRequisition.status == RequisitionStatus.ACTIVE.value,
        BloodRequisition.expires_at <= now,
    )
    if org_id:
        stmt = stmt.where(BloodRequisition.organization_id == org_id)

    result = db.execute(
        stmt.values(status=RequisitionStatus.EXPIRED.value).execution_options(
            synchronize_session=False
        )
    )
    db.commit()
    expired = result.rowcount

    if expired:
        logger.info("Expired %d overdue requisitions", expired)
    return expired


def reuse_requisition(
    db: Session,
    requisition: BloodRequisition,
    required_by_date: datetime,
    *,
    now: datetime | None = None,
) -> BloodRequisition:
    """
    Re-open an EXPIRED requisition as a new ACTIVE one.

    The original stays EXPIRED; the new requisition copies its details,
    starts with no responses and records where it came from.
    """
    if requisition.status != RequisitionStatus.EXPIRED.value:
        raise InvalidTransitionError(requisition.status, RequisitionStatus.ACTIVE.value)

    return create_requisition(
        db,
        requester_id=requisition.requester_id,
        org_id=requisition.organization_id,
        patient_name=requisition.patient_name,
        hospital_name=requisition.hospital_name,
        required_blood_group=requisition.required_blood_group,
        location=requisition.location,
        required_by_date=required_by_date,
        units_needed=requisition.units_needed,
        urgency_level=requisition.urgency_level,
        contact_number=requisition.contact_number,
        alternate_number=requisition.alternate_number,
        medical_condition=requisition.medical_condition,
        additional_notes=requisition.additional_notes,
        allow_contact_reveal=requisition.allow_contact_reveal,
        reused_from_id=requisition.id,
        now=now,
    )


def ensure_accepting_responses(
    requisition: BloodRequisition,
    now: datetime | None = None,
) -> None:
    """Raise unless the requisition is ACTIVE and not past expires_at."""
    if requisition.status != RequisitionStatus.ACTIVE.value:
        raise RequisitionNotActiveError(
            f"Requisition is {requisition.status.lower()} and no longer accepts responses"
        )
    if is_expired(requisition, now):
        raise RequisitionNotActiveError("Requisition has expired")

