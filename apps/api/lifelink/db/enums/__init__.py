"""Enum definitions for application constants."""

from lifelink.db.enums.jobs import DEFAULT_JOB_STATUS, JobStatus, JobType
from lifelink.db.enums.lifelink import (
    BloodGroup,
    DevicePlatform,
    DonorNotificationStatus,
    DonorNotificationType,
    DonorResponseType,
    RequisitionStatus,
    UrgencyLevel,
)
from lifelink.db.enums.notifications import (
    DeliveryStatus,
    NotificationChannel,
    NotificationPriority,
    NotificationType,
)

__all__ = [
    "BloodGroup",
    "DEFAULT_JOB_STATUS",
    "DeliveryStatus",
    "DevicePlatform",
    "DonorNotificationStatus",
    "DonorNotificationType",
    "DonorResponseType",
    "JobStatus",
    "JobType",
    "NotificationChannel",
    "NotificationPriority",
    "NotificationType",
    "RequisitionStatus",
    "UrgencyLevel",
]
