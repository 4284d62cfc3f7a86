"""
Tests for the commission calculation.
"""
from decimal import Decimal

import pytest

from bookings.commission import CommissionPolicy, calculate_commission
from bookings.models import CommissionSettings


def policy(pct="0.10", minimum="0", maximum="1000", active=True):
    return CommissionPolicy(
        platform_fee_percentage=Decimal(pct),
        minimum_fee=Decimal(minimum),
        maximum_fee=Decimal(maximum),
        is_active=active,
    )


def test_ten_percent_of_one_thousand():
    result = calculate_commission(Decimal("1000.00"), policy())
    assert result.fee == Decimal("100.00")
    assert result.organizer_amount == Decimal("900.00")
    assert result.applied_percentage == Decimal("0.10")


def test_fee_rounds_half_up_to_cents():
    result = calculate_commission(Decimal("0.05"), policy(pct="0.10"))
    assert result.fee == Decimal("0.01")
    result = calculate_commission(Decimal("333.35"), policy(pct="0.10"))
    assert result.fee == Decimal("33.34")


def test_minimum_fee_applies():
    result = calculate_commission(Decimal("100.00"), policy(minimum="50"))
    assert result.fee == Decimal("50.00")
    assert result.organizer_amount == Decimal("50.00")


def test_maximum_fee_caps():
    result = calculate_commission(Decimal("50000.00"), policy(maximum="1000"))
    assert result.fee == Decimal("1000.00")
    assert result.organizer_amount == Decimal("49000.00")


def test_minimum_fee_never_exceeds_total():
    result = calculate_commission(Decimal("20.00"), policy(minimum="50"))
    assert result.fee == Decimal("20.00")
    assert result.organizer_amount == Decimal("0.00")


def test_inactive_policy_charges_nothing():
    result = calculate_commission(Decimal("1000.00"), policy(active=False))
    assert result.fee == Decimal("0.00")
    assert result.organizer_amount == Decimal("1000.00")
    assert result.applied_percentage == Decimal("0.00")


@pytest.mark.parametrize("total", ["0.00", "0.01", "99.99", "1234.56", "10000.00", "987654.32"])
def test_split_always_adds_up(total):
    result = calculate_commission(Decimal(total), policy(pct="0.075", minimum="5", maximum="500"))
    assert result.fee + result.organizer_amount == Decimal(total)
    assert Decimal("0") <= result.fee <= Decimal(total)


def test_policy_rejects_bad_values():
    with pytest.raises(ValueError):
        policy(pct="1.5")
    with pytest.raises(ValueError):
        policy(minimum="100", maximum="10")


@pytest.mark.django_db
def test_settings_row_seeded_from_defaults(settings):
    settings.COMMISSION_DEFAULTS = {
        "PLATFORM_FEE_PERCENTAGE": "0.05",
        "MINIMUM_FEE": "10",
        "MAXIMUM_FEE": "200",
        "IS_ACTIVE": True,
    }
    row = CommissionSettings.load()
    assert row.pk == 1
    assert row.as_policy() == policy(pct="0.05", minimum="10", maximum="200")

    row.platform_fee_percentage = Decimal("0.2")
    row.save()
    assert CommissionSettings.load().platform_fee_percentage == Decimal("0.2")
    assert CommissionSettings.objects.count() == 1
