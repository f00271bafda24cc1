from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from ..exceptions import InvariantViolation
from ..utils.constants import FEE_BEARING_STATES
from ..utils.dates import as_datetime
from ..utils.money import ZERO, to_decimal


@dataclass
class Order:
    """
    Read-only snapshot of a stored order. The Store keeps raw dicts; the
    lifecycle engine wraps them into this object so the evaluator works on
    parsed datetimes and Decimals instead of strings.
    """
    order_id: str
    status: str
    end_date: datetime
    total_amount: Decimal
    remaining_amount: Decimal = ZERO
    late_fee: Decimal = ZERO
    start_date: Optional[datetime] = None
    order_number: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    reminder_sent_on: Optional[date] = None
    raw: dict = field(default_factory=dict, repr=False, compare=False)

    @property
    def reference(self) -> str:
        """Human-friendly identifier for logs and messages."""
        return self.order_number or self.order_id

    @classmethod
    def from_dict(cls, d: dict) -> "Order":
        """
        Map a stored order dict to an Order snapshot.
        Raises InvariantViolation when the fields the engine depends on
        (end_date, amounts) are missing or malformed.
        """
        oid = d.get("order_id") or d.get("id")
        if not d.get("end_date"):
            raise InvariantViolation("Order has no end_date", order_id=oid)
        try:
            end = as_datetime(d["end_date"])
        except ValueError as e:
            raise InvariantViolation(f"Order end_date is invalid: {e}", order_id=oid) from e

        start = None
        if d.get("start_date"):
            try:
                start = as_datetime(d["start_date"])
            except ValueError:
                start = None

        try:
            total = to_decimal(d.get("total_amount"))
            remaining = to_decimal(d.get("remaining_amount"), default=ZERO)
            late_fee = to_decimal(d.get("late_fee"), default=ZERO)
        except ValueError as e:
            raise InvariantViolation(f"Order amounts are invalid: {e}", order_id=oid) from e
        if total < 0:
            raise InvariantViolation("Order total_amount is negative", order_id=oid)
        if late_fee < 0:
            raise InvariantViolation("Order late_fee is negative", order_id=oid)

        status = (d.get("status") or "").strip().lower()
        if late_fee > 0 and status not in FEE_BEARING_STATES:
            raise InvariantViolation(f"Order has a late fee while {status or 'no status'}", order_id=oid)

        sent_on = d.get("reminder_sent_on")
        if isinstance(sent_on, str):
            try:
                sent_on = date.fromisoformat(sent_on)
            except ValueError:
                sent_on = None

        return cls(
            order_id=oid,
            status=status,
            end_date=end,
            total_amount=total,
            remaining_amount=remaining,
            late_fee=late_fee,
            start_date=start,
            order_number=d.get("order_number"),
            customer_email=d.get("customer_email"),
            customer_name=d.get("customer_name"),
            reminder_sent_on=sent_on,
            raw=d,
        )
