"""Tests for blood compatibility and donation cooldown rules."""

from datetime import datetime, timedelta, timezone

import pytest

from lifelink.core.errors import ValidationError
from lifelink.db.enums import BloodGroup
from lifelink.services import compatibility_service


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_parse_blood_group_accepts_symbol_and_name():
    assert compatibility_service.parse_blood_group("a+") == BloodGroup.A_POSITIVE
    assert compatibility_service.parse_blood_group(" O- ") == BloodGroup.O_NEGATIVE
    assert compatibility_service.parse_blood_group("AB_NEGATIVE") == BloodGroup.AB_NEGATIVE
    assert compatibility_service.parse_blood_group(BloodGroup.B_POSITIVE) == BloodGroup.B_POSITIVE


@pytest.mark.parametrize("value", ["C+", "", "A", None, 7])
def test_parse_blood_group_rejects_unknown(value):
    with pytest.raises(ValidationError):
        compatibility_service.parse_blood_group(value)


def test_universal_donor_and_recipient():
    assert compatibility_service.compatible_recipients("O-") == frozenset(BloodGroup)
    assert compatibility_service.compatible_donors("AB+") == frozenset(BloodGroup)
    assert compatibility_service.compatible_donors("O-") == frozenset({BloodGroup.O_NEGATIVE})
    assert compatibility_service.compatible_recipients("AB+") == frozenset({BloodGroup.AB_POSITIVE})


def test_compatible_donors_for_a_positive():
    assert compatibility_service.compatible_donors("A+") == frozenset(
        {
            BloodGroup.A_POSITIVE,
            BloodGroup.A_NEGATIVE,
            BloodGroup.O_POSITIVE,
            BloodGroup.O_NEGATIVE,
        }
    )


def test_rh_positive_never_gives_to_rh_negative():
    for donor in BloodGroup:
        if not donor.rh_positive:
            continue
        for recipient in BloodGroup:
            if not recipient.rh_positive:
                assert not compatibility_service.is_compatible(donor, recipient)


def test_donors_and_recipients_are_inverse():
    for donor in BloodGroup:
        for recipient in compatibility_service.compatible_recipients(donor):
            assert donor in compatibility_service.compatible_donors(recipient)


def test_b_and_a_are_incompatible():
    assert not compatibility_service.is_compatible("A+", "B+")
    assert not compatibility_service.is_compatible("B-", "A-")
    assert compatibility_service.is_compatible("B-", "AB-")


def test_first_time_donor_is_eligible():
    result = compatibility_service.check_eligibility(None, now=NOW)
    assert result.is_eligible
    assert result.days_since_last_donation is None
    assert result.next_eligible_date is None
    assert result.days_remaining == 0


def test_cooldown_boundary_is_inclusive():
    last = (NOW - timedelta(days=90)).date()
    result = compatibility_service.check_eligibility(last, now=NOW)
    assert result.is_eligible
    assert result.days_since_last_donation == 90


def test_within_cooldown_is_ineligible():
    last = (NOW - timedelta(days=89)).date()
    result = compatibility_service.check_eligibility(last, now=NOW)
    assert not result.is_eligible
    assert result.days_since_last_donation == 89
    assert result.days_remaining == 1
    assert result.next_eligible_date == last + timedelta(days=90)
    assert "1 more days" in result.message


def test_custom_cooldown():
    last = (NOW - timedelta(days=10)).date()
    assert compatibility_service.check_eligibility(last, cooldown_days=7, now=NOW).is_eligible
    assert not compatibility_service.check_eligibility(last, cooldown_days=30, now=NOW).is_eligible


def test_negative_cooldown_rejected():
    with pytest.raises(ValidationError):
        compatibility_service.check_eligibility(None, cooldown_days=-1, now=NOW)
