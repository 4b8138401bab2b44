"""
Blood compatibility and donor eligibility rules.

Pure functions, no I/O. The donation matrix is derived from two rules:
- ABO: O gives to all, A gives to A/AB, B gives to B/AB, AB gives to AB.
- Rh: Rh- donors give to Rh- and Rh+; Rh+ donors give to Rh+ only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from lifelink.core.config import settings
from lifelink.core.errors import ValidationError
from lifelink.db.enums import BloodGroup
from lifelink.utils.datetime_utils import as_utc, utc_now


_ABO_RECIPIENTS: dict[str, frozenset[str]] = {
    "O": frozenset({"O", "A", "B", "AB"}),
    "A": frozenset({"A", "AB"}),
    "B": frozenset({"B", "AB"}),
    "AB": frozenset({"AB"}),
}

ALL_BLOOD_GROUPS: frozenset[BloodGroup] = frozenset(BloodGroup)


def parse_blood_group(value: BloodGroup | str) -> BloodGroup:
    """
    Accept "A+", "A_POSITIVE" or a BloodGroup.

    Raises ValidationError for anything else.
    """
    if isinstance(value, BloodGroup):
        return value
    if isinstance(value, str):
        raw = value.strip().upper()
        try:
            return BloodGroup(raw)
        except ValueError:
            pass
        try:
            return BloodGroup[raw]
        except KeyError:
            pass
    raise ValidationError(f"Invalid blood group: {value!r}")


def is_compatible(donor: BloodGroup | str, recipient: BloodGroup | str) -> bool:
    """True if a donor of `donor` group can give to a recipient of `recipient` group."""
    donor_group = parse_blood_group(donor)
    recipient_group = parse_blood_group(recipient)
    if recipient_group.abo not in _ABO_RECIPIENTS[donor_group.abo]:
        return False
    # Rh+ blood may only go to Rh+ recipients
    return not donor_group.rh_positive or recipient_group.rh_positive


def compatible_recipients(donor: BloodGroup | str) -> frozenset[BloodGroup]:
    """Groups that can receive blood from a `donor` group donor."""
    donor_group = parse_blood_group(donor)
    return frozenset(g for g in BloodGroup if is_compatible(donor_group, g))


def compatible_donors(recipient: BloodGroup | str) -> frozenset[BloodGroup]:
    """Groups that can donate to a `recipient` group patient."""
    recipient_group = parse_blood_group(recipient)
    return frozenset(g for g in BloodGroup if is_compatible(g, recipient_group))


@dataclass(frozen=True)
class EligibilityResult:
    """Donor eligibility based on the donation cooldown."""

    is_eligible: bool
    next_eligible_date: date | None
    days_remaining: int
    days_since_last_donation: int | None
    message: str


def check_eligibility(
    last_donation_date: date | datetime | None,
    cooldown_days: int | None = None,
    now: datetime | None = None,
) -> EligibilityResult:
    """
    Check if a donor may donate again.

    Eligible when there is no previous donation or at least `cooldown_days`
    whole days have passed (boundary inclusive).
    """
    cooldown = settings.DONOR_COOLDOWN_DAYS if cooldown_days is None else cooldown_days
    if cooldown < 0:
        raise ValidationError("cooldown_days must not be negative")

    if last_donation_date is None:
        return EligibilityResult(
            is_eligible=True,
            next_eligible_date=None,
            days_remaining=0,
            days_since_last_donation=None,
            message="Eligible for first-time donation",
        )

    current = as_utc(now) if now is not None else utc_now()
    last = as_utc(last_donation_date)
    days_since = (current - last) // timedelta(days=1)

    if days_since >= cooldown:
        return EligibilityResult(
            is_eligible=True,
            next_eligible_date=None,
            days_remaining=0,
            days_since_last_donation=days_since,
            message=f"Eligible - Last donated {days_since} days ago",
        )

    next_date = (last + timedelta(days=cooldown)).date()
    days_remaining = cooldown - days_since
    return EligibilityResult(
        is_eligible=False,
        next_eligible_date=next_date,
        days_remaining=days_remaining,
        days_since_last_donation=days_since,
        message=(
            f"Must wait {days_remaining} more days "
            f"(Last donated {days_since} days ago)"
        ),
    )
