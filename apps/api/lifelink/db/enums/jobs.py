"""Job-related enums."""

from enum import Enum


class JobType(str, Enum):
    """Types of background jobs."""

    REQUESTER_NOTIFICATION = "requester_notification"  # Tell requester about a donor response
    EMERGENCY_DISPATCH = "emergency_dispatch"  # Fan out a requisition to donors
    REQUISITION_EXPIRY_SWEEP = "requisition_expiry_sweep"
    DONATION_REMINDER = "donation_reminder"


class JobStatus(str, Enum):
    """Status of background jobs."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_JOB_STATUS = JobStatus.PENDING
