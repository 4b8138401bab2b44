"""Pydantic schemas for blood requisitions and donor responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from lifelink.db.enums import BloodGroup, DonorResponseType, UrgencyLevel


class RequisitionCreate(BaseModel):
    """Request schema for creating a blood requisition."""

    patient_name: str = Field(min_length=1, max_length=255)
    hospital_name: str = Field(min_length=1, max_length=255)
    required_blood_group: BloodGroup
    location: str = Field(min_length=1, max_length=255)
    required_by_date: datetime
    units_needed: int = Field(default=1, ge=1)
    urgency_level: UrgencyLevel = UrgencyLevel.HIGH
    contact_number: str | None = None
    alternate_number: str | None = None
    medical_condition: str | None = None
    additional_notes: str | None = None
    allow_contact_reveal: bool = True


class RequisitionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    organization_id: UUID | None
    requester_id: UUID
    patient_name: str
    hospital_name: str
    required_blood_group: str
    units_needed: int
    urgency_level: str
    location: str
    required_by_date: datetime
    expires_at: datetime
    allow_contact_reveal: bool
    status: str
    reused_from_id: UUID | None
    created_at: datetime


class DonorResponseCreate(BaseModel):
    """A donor's answer to a requisition."""

    response: DonorResponseType
    message: str | None = Field(default=None, max_length=1000)


class DonorResponseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    donor_id: UUID
    requisition_id: UUID
    response: str
    message: str | None
    contact_phone: str | None
    is_contact_revealed: bool
    responded_at: datetime
