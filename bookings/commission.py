"""
Platform commission on completed bookings.

The fee is a percentage of the booking total, rounded half-up to cents,
then held between the configured minimum and maximum.  It never exceeds
the total itself, so the organizer's share is never negative.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CommissionPolicy:
    platform_fee_percentage: Decimal
    minimum_fee: Decimal = ZERO
    maximum_fee: Decimal = Decimal("1000.00")
    is_active: bool = True

    def __post_init__(self):
        for name in ("platform_fee_percentage", "minimum_fee", "maximum_fee"):
            object.__setattr__(self, name, Decimal(str(getattr(self, name))))
        if not ZERO <= self.platform_fee_percentage <= 1:
            raise ValueError("platform_fee_percentage must be between 0 and 1")
        if self.minimum_fee < 0:
            raise ValueError("minimum_fee must not be negative")
        if self.minimum_fee > self.maximum_fee:
            raise ValueError("minimum_fee must not exceed maximum_fee")


@dataclass(frozen=True)
class CommissionBreakdown:
    fee: Decimal
    organizer_amount: Decimal
    applied_percentage: Decimal


def calculate_commission(total_price, policy: CommissionPolicy) -> CommissionBreakdown:
    total = Decimal(str(total_price)).quantize(CENTS, rounding=ROUND_HALF_UP)
    if total < 0:
        raise ValueError("total_price must not be negative")

    if not policy.is_active:
        return CommissionBreakdown(fee=ZERO, organizer_amount=total, applied_percentage=ZERO)

    fee = (total * policy.platform_fee_percentage).quantize(CENTS, rounding=ROUND_HALF_UP)
    fee = max(fee, policy.minimum_fee)
    fee = min(fee, policy.maximum_fee)
    fee = min(fee, total).quantize(CENTS, rounding=ROUND_HALF_UP)

    return CommissionBreakdown(
        fee=fee,
        organizer_amount=total - fee,
        applied_percentage=policy.platform_fee_percentage,
    )
