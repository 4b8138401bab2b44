"""Job handler registry."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from lifelink.db.enums import JobType
from lifelink.jobs.handlers import lifelink

JobHandler = Callable[[object, object], Awaitable[None]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.REQUESTER_NOTIFICATION.value: lifelink.process_requester_notification,
    JobType.EMERGENCY_DISPATCH.value: lifelink.process_emergency_dispatch,
    JobType.REQUISITION_EXPIRY_SWEEP.value: lifelink.process_requisition_expiry_sweep,
    JobType.DONATION_REMINDER.value: lifelink.process_donation_reminder,
}


def resolve_job_handler(job_type: str) -> JobHandler:
    handler = JOB_HANDLERS.get(job_type)
    if not handler:
        raise ValueError(f"Unknown job type: {job_type}")
    return handler
