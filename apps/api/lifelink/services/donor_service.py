"""
Donor directory - donor profiles, donations and push device tokens.

Provides the donor lookups LifeLink matching depends on plus the device
token bookkeeping the push gateway feeds back into (invalid tokens).
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

from sqlalchemy import func, or_, update
from sqlalchemy.orm import Session

from lifelink.core.config import settings
from lifelink.core.errors import NotFoundError, ValidationError
from lifelink.db.models import BloodDonation, DeviceToken, User
from lifelink.services import compatibility_service
from lifelink.services.compatibility_service import EligibilityResult
from lifelink.utils.datetime_utils import as_utc, utc_now
from lifelink.utils.pagination import PaginatedResponse, PaginationParams, paginate_query

logger = logging.getLogger(__name__)

UNSET = object()


@dataclass
class DonorCard:
    """Donor as shown to a requester searching for help."""

    id: UUID
    name: str
    blood_group: str
    total_donations: int
    location: str
    eligibility: EligibilityResult
    contact_available: bool
    phone: str | None


def _format_location(user: User) -> str:
    parts = [p for p in (user.city, user.state) if p]
    return ", ".join(parts) if parts else "Location not specified"


def _to_card(user: User, eligibility: EligibilityResult) -> DonorCard:
    return DonorCard(
        id=user.id,
        name=user.full_name or "Unknown",
        blood_group=user.blood_group,
        total_donations=user.total_donations,
        location=_format_location(user),
        eligibility=eligibility,
        contact_available=user.show_phone,
        phone=user.phone if user.show_phone else None,
    )


# =============================================================================
# Donor search
# =============================================================================


def _off_cooldown(now: datetime | None = None):
    """SQL form of the eligibility check: never donated, or the cooldown has passed."""
    today = (as_utc(now) if now else utc_now()).date()
    cutoff = today - timedelta(days=settings.DONOR_COOLDOWN_DAYS)
    return or_(User.last_donation_date.is_(None), User.last_donation_date <= cutoff)


def find_available_donors(
    db: Session,
    required_blood_group: str,
    location: str | None = None,
    limit: int | None = None,
    org_id: UUID | None = None,
    *,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> list[DonorCard]:
    """
    Find compatible, eligible, active donors for a requisition.

    Candidates are ranked by experience (total donations, then time since
    last donation), cut to `limit`, then shuffled so the same donors are
    not always asked first.
    """
    limit = limit or settings.DONOR_SEARCH_DEFAULT_LIMIT
    if limit <= 0:
        raise ValidationError("limit must be positive")

    groups = compatibility_service.compatible_donors(required_blood_group)

    query = db.query(User).filter(
        User.is_blood_donor.is_(True),
        User.is_active.is_(True),
        User.blood_group.in_([g.value for g in groups]),
    )
    if org_id:
        query = query.filter(User.organization_id == org_id)
    if location and location.strip():
        pattern = f"%{location.strip()}%"
        query = query.filter(or_(User.city.ilike(pattern), User.state.ilike(pattern)))

    # Cooldown in SQL so the limit only counts donors who can give today
    query = query.filter(_off_cooldown(now))
    candidates = (
        query.order_by(
            User.total_donations.desc(),
            User.last_donation_date.asc().nulls_first(),
        )
        .limit(limit)
        .all()
    )

    eligible: list[DonorCard] = []
    for user in candidates:
        eligibility = compatibility_service.check_eligibility(user.last_donation_date, now=now)
        if eligibility.is_eligible:
            eligible.append(_to_card(user, eligibility))

    eligible.sort(
        key=lambda card: (
            card.total_donations,
            card.eligibility.days_since_last_donation
            if card.eligibility.days_since_last_donation is not None
            else 999,
        ),
        reverse=True,
    )
    selected = eligible[:limit]
    (rng or random).shuffle(selected)
    return selected


def get_donors_by_ids(
    db: Session,
    donor_ids: list[UUID],
    org_id: UUID | None = None,
) -> list[User]:
    """Active opted-in donors among the given ids (tenant scoped)."""
    if not donor_ids:
        return []
    query = db.query(User).filter(
        User.id.in_(donor_ids),
        User.is_blood_donor.is_(True),
        User.is_active.is_(True),
    )
    if org_id:
        query = query.filter(User.organization_id == org_id)
    return query.all()


def get_blood_group_stats(db: Session, org_id: UUID | None = None) -> dict[str, int]:
    """Count of active donors per blood group."""
    query = db.query(User.blood_group, func.count(User.id)).filter(
        User.is_blood_donor.is_(True),
        User.is_active.is_(True),
        User.blood_group.is_not(None),
    )
    if org_id:
        query = query.filter(User.organization_id == org_id)
    return {group: count for group, count in query.group_by(User.blood_group).all()}


@dataclass
class DonorDashboard:
    donors: PaginatedResponse[DonorCard]
    eligible_on_page: int
    blood_group_distribution: dict[str, int]


def get_lifelink_dashboard(
    db: Session,
    org_id: UUID | None = None,
    *,
    blood_group: str | None = None,
    city: str | None = None,
    eligible_only: bool = False,
    pagination: PaginationParams | None = None,
    now: datetime | None = None,
) -> DonorDashboard:
    """Donor directory overview: a page of donor cards plus per-group counts."""
    pagination = pagination or PaginationParams()
    query = db.query(User).filter(
        User.is_blood_donor.is_(True),
        User.is_active.is_(True),
        User.blood_group.is_not(None),
    )
    if org_id:
        query = query.filter(User.organization_id == org_id)
    if blood_group:
        query = query.filter(
            User.blood_group == compatibility_service.parse_blood_group(blood_group).value
        )
    if city and city.strip():
        query = query.filter(User.city.ilike(f"%{city.strip()}%"))
    if eligible_only:
        query = query.filter(_off_cooldown(now))
    query = query.order_by(
        User.last_donation_date.desc().nulls_last(),
        User.total_donations.desc(),
        User.created_at.desc(),
    )

    users, total = paginate_query(query, pagination)
    cards = [
        _to_card(user, compatibility_service.check_eligibility(user.last_donation_date, now=now))
        for user in users
    ]

    return DonorDashboard(
        donors=PaginatedResponse.create(cards, total, pagination),
        eligible_on_page=sum(1 for card in cards if card.eligibility.is_eligible),
        blood_group_distribution=get_blood_group_stats(db, org_id),
    )


# =============================================================================
# Donor profile & donations
# =============================================================================


def get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def update_blood_profile(
    db: Session,
    user: User,
    *,
    blood_group: str | None | object = UNSET,
    is_blood_donor: bool | None = None,
    show_phone: bool | None = None,
    last_donation_date: date | None | object = UNSET,
) -> User:
    """Update donor profile fields. Opting in requires a blood group."""
    if blood_group is not UNSET:
        user.blood_group = (
            compatibility_service.parse_blood_group(blood_group).value if blood_group else None
        )
    if last_donation_date is not UNSET:
        if last_donation_date and last_donation_date > utc_now().date():
            raise ValidationError("last_donation_date cannot be in the future")
        user.last_donation_date = last_donation_date
    if show_phone is not None:
        user.show_phone = show_phone
    if is_blood_donor is not None:
        if is_blood_donor and not user.blood_group:
            raise ValidationError("Set a blood group before opting in as a donor")
        user.is_blood_donor = is_blood_donor

    db.commit()
    db.refresh(user)
    return user


def deactivate_donor(db: Session, user: User) -> User:
    """Donors are never deleted; they stop being matched."""
    user.is_active = False
    db.commit()
    db.refresh(user)
    return user


def record_donation(
    db: Session,
    donor_id: UUID,
    *,
    donation_date: date | None = None,
    location: str | None = None,
    units: int = 1,
    notes: str | None = None,
) -> BloodDonation:
    """Record a donation and bump the donor's counters in one transaction."""
    if units < 1:
        raise ValidationError("units must be at least 1")
    donation_date = donation_date or utc_now().date()
    if donation_date > utc_now().date():
        raise ValidationError("donation_date cannot be in the future")

    donor = get_user(db, donor_id)
    donation = BloodDonation(
        donor_id=donor.id,
        organization_id=donor.organization_id,
        donation_date=donation_date,
        location=location,
        units=units,
        notes=notes,
    )
    try:
        db.add(donation)
        if donor.last_donation_date is None or donation_date >= donor.last_donation_date:
            donor.last_donation_date = donation_date
        donor.total_donations = (donor.total_donations or 0) + 1
        donor.total_units_donated = (donor.total_units_donated or 0) + units
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(donation)
    logger.info("Recorded donation %s for donor %s", donation.id, donor.id)
    return donation


def list_donations(db: Session, donor_id: UUID, limit: int = 50) -> list[BloodDonation]:
    return (
        db.query(BloodDonation)
        .filter(BloodDonation.donor_id == donor_id)
        .order_by(BloodDonation.donation_date.desc())
        .limit(limit)
        .all()
    )


def get_donation_status(db: Session, donor_id: UUID, now: datetime | None = None) -> EligibilityResult:
    donor = get_user(db, donor_id)
    return compatibility_service.check_eligibility(donor.last_donation_date, now=now)


# =============================================================================
# Device tokens
# =============================================================================


def register_device_token(
    db: Session,
    user_id: UUID,
    token: str,
    *,
    platform: str | None = None,
    device_name: str | None = None,
    app_version: str | None = None,
    org_id: UUID | None = None,
) -> DeviceToken:
    """Register (or re-activate) a device token for a user."""
    token = (token or "").strip()
    if not token:
        raise ValidationError("token is required")

    device = (
        db.query(DeviceToken)
        .filter(DeviceToken.user_id == user_id, DeviceToken.token == token)
        .first()
    )
    if device is None:
        device = DeviceToken(user_id=user_id, token=token)
        db.add(device)

    device.platform = platform
    device.device_name = device_name
    device.app_version = app_version
    device.organization_id = org_id
    device.is_active = True
    device.invalid_at = None
    device.last_used_at = utc_now()
    db.commit()
    db.refresh(device)
    return device


def get_active_device_tokens(db: Session, user_ids: list[UUID]) -> dict[UUID, list[str]]:
    """Map each user to their active tokens (most recently used first)."""
    if not user_ids:
        return {}
    rows = (
        db.query(DeviceToken.user_id, DeviceToken.token)
        .filter(DeviceToken.user_id.in_(user_ids), DeviceToken.is_active.is_(True))
        .order_by(DeviceToken.last_used_at.desc())
        .all()
    )
    tokens: dict[UUID, list[str]] = defaultdict(list)
    for user_id, token in rows:
        tokens[user_id].append(token)
    return dict(tokens)


def deactivate_device_tokens(db: Session, tokens: list[str]) -> int:
    """Mark tokens as invalid so future sends skip them."""
    if not tokens:
        return 0
    result = db.execute(
        update(DeviceToken)
        .where(DeviceToken.token.in_(tokens), DeviceToken.is_active.is_(True))
        .values(is_active=False, invalid_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0
