"""SQLAlchemy ORM models."""

from lifelink.db.models.auth import DeviceToken, Organization, User
from lifelink.db.models.jobs import Job
from lifelink.db.models.lifelink import (
    BloodDonation,
    BloodRequisition,
    DonorNotification,
    DonorResponse,
)
from lifelink.db.models.notifications import Notification, TenantPushConfig

__all__ = [
    "BloodDonation",
    "BloodRequisition",
    "DeviceToken",
    "DonorNotification",
    "DonorResponse",
    "Job",
    "Notification",
    "Organization",
    "TenantPushConfig",
    "User",
]
