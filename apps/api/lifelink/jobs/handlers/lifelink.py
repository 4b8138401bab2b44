"""LifeLink job handlers."""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from lifelink.core.structured_logging import build_log_context
from lifelink.db.enums import RequisitionStatus
from lifelink.services import (
    notification_service,
    requisition_service,
    response_service,
)

logger = logging.getLogger(__name__)


def _require_uuid(payload: dict, key: str) -> UUID:
    raw = payload.get(key)
    if not raw:
        raise ValueError(f"Missing {key} in job payload")
    try:
        return UUID(str(raw))
    except (TypeError, ValueError):
        raise ValueError(f"Invalid {key} in job payload")


def _coerce_uuid_list(raw_ids) -> list[UUID]:
    ids = []
    for raw in raw_ids or []:
        try:
            ids.append(UUID(str(raw)))
        except (TypeError, ValueError):
            logger.warning("Skipping invalid UUID value '%s' in job payload", raw)
    return ids


async def process_requester_notification(db, job) -> None:
    """Tell a requester how a donor answered their requisition."""
    payload = job.payload or {}
    response_id = _require_uuid(payload, "response_id")
    result = await response_service.notify_requester_of_response(db, response_id)
    if result is not None:
        logger.info(
            "Requester notified (sent=%d, no_device=%d)",
            result.notifications_sent,
            result.no_channel,
            extra=build_log_context(job_id=job.id),
        )


async def process_emergency_dispatch(db, job) -> None:
    """
    Fan a requisition out to donors.

    Payload:
        - requisition_id: UUID of the requisition
        - donor_ids: explicit donors (optional; broadcast to available donors when absent)
        - custom_message: optional text appended to the alert
    """
    payload = job.payload or {}
    requisition_id = _require_uuid(payload, "requisition_id")
    requisition = requisition_service.get_requisition(db, requisition_id, job.organization_id)
    if requisition.status != RequisitionStatus.ACTIVE.value or requisition_service.is_expired(
        requisition
    ):
        logger.info(
            "Requisition no longer active, skipping dispatch",
            extra=build_log_context(job_id=job.id, requisition_id=requisition_id),
        )
        return

    donor_ids = _coerce_uuid_list(payload.get("donor_ids"))
    if donor_ids:
        result = await notification_service.send_emergency_notification(
            db, requisition, donor_ids, payload.get("custom_message")
        )
    else:
        result = await notification_service.broadcast_to_available_donors(
            db, requisition, location=payload.get("location")
        )

    if result is not None:
        logger.info(
            "Emergency dispatch complete: %d donors, %d sent",
            result.donor_notifications,
            result.dispatch.notifications_sent,
            extra=build_log_context(job_id=job.id, requisition_id=requisition_id),
        )


async def process_requisition_expiry_sweep(db, job) -> None:
    payload = job.payload or {}
    now = datetime.fromisoformat(payload["now"]) if payload.get("now") else None
    expired = requisition_service.expire_overdue_requisitions(db, now, org_id=job.organization_id)
    logger.info("Expiry sweep expired %d requisitions", expired, extra=build_log_context(job_id=job.id))


async def process_donation_reminder(db, job) -> None:
    payload = job.payload or {}
    donor_ids = _coerce_uuid_list(payload.get("donor_ids"))
    if not donor_ids:
        return
    await notification_service.send_donation_reminder(
        db,
        donor_ids,
        org_id=job.organization_id,
        message=payload.get("message"),
    )
