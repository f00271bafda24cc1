"""Late fee computation. Pure functions: no store access, no clock, no logging."""

import math
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..exceptions import InvariantViolation
from ..models.order import Order
from ..models.policy import LateFeePolicy
from ..utils.dates import ONE_DAY
from ..utils.money import ZERO, round_down, round_half_up

HUNDRED = Decimal(100)


def days_overdue(end_date: datetime, now: datetime) -> int:
    """Whole days past end_date, rounded up (1 second late counts as 1 day)."""
    return math.ceil((now - end_date) / ONE_DAY)


def days_until(end_date: datetime, now: datetime) -> int:
    """Whole days left before end_date, rounded up."""
    return math.ceil((end_date - now) / ONE_DAY)


def compute_late_fee(
        order: Order,
        policy: Optional[LateFeePolicy],
        now: datetime,
        fallback_fee_per_day: Optional[Decimal] = None,
) -> Decimal:
    """
    Late fee owed on `order` at time `now`, recomputed from scratch.

    - Not yet late -> 0
    - No active policy -> flat fallback_fee_per_day per late day
      (0 when no fallback is configured either)
    - Within the grace period -> 0
    - Otherwise total * daily% per billable day, capped at total * max%

    The raw fee is rounded half-up to cents and the cap is rounded down, so
    rounding never pushes the result above the cap.
    """
    if order.end_date is None:
        raise InvariantViolation("Order has no end_date", order_id=order.order_id)
    if order.total_amount < 0:
        raise InvariantViolation("Order total_amount is negative", order_id=order.order_id)

    late_days = days_overdue(order.end_date, now)
    if late_days <= 0:
        return ZERO

    if policy is None or not policy.is_active:
        if fallback_fee_per_day is None:
            return ZERO
        fee = round_half_up(fallback_fee_per_day * late_days)
    else:
        grace_days = policy.grace_period_days
        if late_days <= grace_days:
            return ZERO

        daily_fee = order.total_amount * (policy.daily_fee_percentage / HUNDRED)
        raw_fee = round_half_up(daily_fee * (late_days - grace_days))
        cap = round_down(order.total_amount * (policy.max_fee_percentage / HUNDRED))
        fee = min(raw_fee, cap)

    if fee < 0:
        raise InvariantViolation(f"Computed late fee is negative ({fee})", order_id=order.order_id)
    return fee
