"""Notification-related enums."""

from enum import Enum


class NotificationType(str, Enum):
    """Types of in-app notifications."""

    LIFELINK_EMERGENCY = "LIFELINK_EMERGENCY"
    LIFELINK_BROADCAST = "LIFELINK_BROADCAST"
    LIFELINK_REMINDER = "LIFELINK_REMINDER"
    LIFELINK_RESPONSE = "LIFELINK_RESPONSE"  # Donor answered a requester

    # System notifications
    SYSTEM_ANNOUNCEMENT = "SYSTEM_ANNOUNCEMENT"


class NotificationPriority(str, Enum):
    EMERGENCY = "EMERGENCY"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def provider_priority(self) -> str:
        """Map to push provider priority ('high' or 'normal')."""
        if self in (NotificationPriority.EMERGENCY, NotificationPriority.HIGH):
            return "high"
        return "normal"


class NotificationChannel(str, Enum):
    PUSH = "PUSH"
    IN_APP = "IN_APP"


class DeliveryStatus(str, Enum):
    """Delivery state of an in-app notification's push attempt."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    NO_DEVICE = "NO_DEVICE"  # Recipient has no active device token
