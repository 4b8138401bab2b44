"""LifeLink (blood donation) enums."""

from enum import Enum


class BloodGroup(str, Enum):
    """ABO x Rh blood groups."""

    A_POSITIVE = "A+"
    A_NEGATIVE = "A-"
    B_POSITIVE = "B+"
    B_NEGATIVE = "B-"
    AB_POSITIVE = "AB+"
    AB_NEGATIVE = "AB-"
    O_POSITIVE = "O+"
    O_NEGATIVE = "O-"

    @property
    def abo(self) -> str:
        return self.value[:-1]

    @property
    def rh_positive(self) -> bool:
        return self.value.endswith("+")


class UrgencyLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class RequisitionStatus(str, Enum):
    """Lifecycle of a blood requisition. Everything but ACTIVE is terminal."""

    ACTIVE = "ACTIVE"
    FULFILLED = "FULFILLED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self != RequisitionStatus.ACTIVE


class DonorResponseType(str, Enum):
    WILLING = "WILLING"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    NOT_SUITABLE = "NOT_SUITABLE"


class DonorNotificationType(str, Enum):
    EMERGENCY = "EMERGENCY"
    BROADCAST = "BROADCAST"
    REMINDER = "REMINDER"


class DonorNotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class DevicePlatform(str, Enum):
    ANDROID = "android"
    IOS = "ios"
    WEB = "web"
