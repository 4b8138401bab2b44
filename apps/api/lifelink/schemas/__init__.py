"""Pydantic schemas for configuration writes and masked reads."""

from lifelink.schemas.push_config import PushConfigRead, PushConfigUpdate
from lifelink.schemas.requisition import (
    DonorResponseCreate,
    DonorResponseRead,
    RequisitionCreate,
    RequisitionRead,
)

__all__ = [
    "DonorResponseCreate",
    "DonorResponseRead",
    "PushConfigRead",
    "PushConfigUpdate",
    "RequisitionCreate",
    "RequisitionRead",
]
