"""Pydantic schemas for tenant push configuration."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PushConfigUpdate(BaseModel):
    """
    Write model for a tenant's push credentials.

    private_key=None keeps the stored key; an empty string clears it.
    """

    project_id: str
    client_email: str
    private_key: str | None = None
    default_icon: str | None = None
    default_badge: str | None = None
    default_sound: str | None = None
    daily_limit: int | None = Field(default=None, ge=0)
    monthly_limit: int | None = Field(default=None, ge=0)

    @field_validator("project_id", "client_email")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("client_email")
    @classmethod
    def validate_client_email(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("client_email must be a service account email")
        return v.lower()


class PushConfigRead(BaseModel):
    """Masked read model: secrets are replaced by a fixed placeholder."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID
    project_id: str | None
    client_email: str | None
    private_key: str | None
    default_icon: str | None
    default_badge: str | None
    default_sound: str | None
    daily_limit: int
    monthly_limit: int
    daily_sent: int
    monthly_sent: int
    is_active: bool
    is_configured: bool
    last_tested_at: datetime | None
    updated_at: datetime
