"""LifeLink error taxonomy.

ValidationError family: caller mistakes, returned directly, never retried.
CredentialError: tenant credentials unusable; callers fall back to the
default push provider instead of surfacing it.
DeliveryError: per-recipient push outcome (invalid token vs transient).
PersistenceError: notification rows could not be written; fatal to a dispatch.
"""

from __future__ import annotations

from enum import Enum


class LifeLinkError(Exception):
    """Base class for LifeLink errors."""


class ValidationError(LifeLinkError):
    """Invalid input or illegal operation for the current state."""


class InvalidTransitionError(ValidationError):
    """Requisition status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Cannot move requisition from {from_status} to {to_status}")


class RequisitionNotActiveError(ValidationError):
    """Requisition is no longer accepting responses or notifications."""


class AlreadyRespondedError(ValidationError):
    """Donor already has a response recorded for the requisition."""

    def __init__(self, existing_response: str, responded_at=None):
        self.existing_response = existing_response
        self.responded_at = responded_at
        super().__init__("You have already responded to this requisition")


class NotFoundError(LifeLinkError):
    """Entity missing or outside the caller's tenant."""


class PermissionDeniedError(LifeLinkError):
    """Caller is not allowed to act on the entity."""


class CredentialError(LifeLinkError):
    """Encrypted tenant credentials could not be decrypted or are incomplete."""


class PersistenceError(LifeLinkError):
    """Notification records could not be persisted."""


class DeliveryErrorCategory(str, Enum):
    """Classification of per-recipient push failures."""

    INVALID_TOKEN = "invalid_token"  # Unregistered/invalid, deactivate token
    TRANSIENT = "transient"  # Timeout, quota, outage; caller may retry


class DeliveryError(LifeLinkError):
    """Push delivery failure for a single recipient token."""

    def __init__(
        self,
        message: str,
        *,
        category: DeliveryErrorCategory = DeliveryErrorCategory.TRANSIENT,
        code: str | None = None,
    ):
        self.category = category
        self.code = code
        super().__init__(message)

    @property
    def is_invalid_token(self) -> bool:
        return self.category == DeliveryErrorCategory.INVALID_TOKEN
