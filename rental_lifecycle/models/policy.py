from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..exceptions import InvalidPolicyError
from ..utils.money import to_decimal


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class LateFeePolicy:
    """
    How late fees accrue on an overdue order.

    - daily_fee_percentage: percent of the rental total charged per late day
    - max_fee_percentage: cap on the cumulative fee, as percent of the total
    - grace_period_hours: hours after end_date during which nothing accrues
    """
    daily_fee_percentage: Decimal
    max_fee_percentage: Decimal
    grace_period_hours: int
    is_active: bool = True
    name: str = ""
    policy_id: Optional[str] = None

    @property
    def grace_period_days(self) -> Decimal:
        return Decimal(self.grace_period_hours) / Decimal(24)

    def validate(self) -> "LateFeePolicy":
        """Raise InvalidPolicyError unless the policy is internally consistent."""
        if self.daily_fee_percentage < 0:
            raise InvalidPolicyError("daily_fee_percentage must be >= 0")
        if self.max_fee_percentage < 0:
            raise InvalidPolicyError("max_fee_percentage must be >= 0")
        if self.max_fee_percentage < self.daily_fee_percentage:
            raise InvalidPolicyError("max_fee_percentage must be >= daily_fee_percentage")
        if self.grace_period_hours < 0:
            raise InvalidPolicyError("grace_period_hours must be >= 0")
        return self

    def to_dict(self) -> dict:
        return {
            "policy_id": self.policy_id,
            "name": self.name,
            "daily_fee_percentage": str(self.daily_fee_percentage),
            "max_fee_percentage": str(self.max_fee_percentage),
            "grace_period_hours": self.grace_period_hours,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "LateFeePolicy":
        """Build and validate a policy from a stored or submitted dict."""
        try:
            daily = to_decimal(d.get("daily_fee_percentage"))
            cap = to_decimal(d.get("max_fee_percentage"))
        except ValueError as e:
            raise InvalidPolicyError(f"Invalid percentage: {e}") from e

        hours_raw = d.get("grace_period_hours", 0)
        try:
            hours = int(hours_raw)
        except (TypeError, ValueError, OverflowError) as e:
            raise InvalidPolicyError(f"Invalid grace_period_hours: {hours_raw!r}") from e
        if str(hours_raw).strip() not in (str(hours), f"{hours}.0"):
            raise InvalidPolicyError("grace_period_hours must be a whole number")

        return cls(
            daily_fee_percentage=daily,
            max_fee_percentage=cap,
            grace_period_hours=hours,
            is_active=_as_bool(d.get("is_active", True)),
            name=d.get("name") or "",
            policy_id=d.get("policy_id"),
        ).validate()
