"""Time-driven order transitions: which action, if any, applies to an order right now."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..models.order import Order
from ..models.policy import LateFeePolicy
from ..utils.constants import OrderStatus
from .fee_calculator import compute_late_fee, days_overdue, days_until


@dataclass(frozen=True)
class ReminderDecision:
    order: Order
    days_remaining: int


@dataclass(frozen=True)
class OverdueDecision:
    order: Order
    days_overdue: int
    fee: Decimal


@dataclass(frozen=True)
class FeeDecision:
    order: Order
    new_fee: Decimal
    delta: Decimal
    new_remaining: Decimal


class LifecycleEvaluator:
    """
    Decides the time-driven transitions for one order snapshot.
    Only `delivered` and `overdue` orders are ever eligible; every other
    status is inert here.
    """

    def __init__(self, reminder_days: int, fallback_fee_per_day: Optional[Decimal] = None):
        self.reminder_days = reminder_days
        self.fallback_fee_per_day = fallback_fee_per_day

    def check_reminder(self, order: Order, now: datetime) -> Optional[ReminderDecision]:
        """
        Reminder is due when the order is delivered, returns within the
        reminder window, and no reminder went out yet today.
        """
        if order.status != OrderStatus.DELIVERED:
            return None
        remaining = days_until(order.end_date, now)
        if not (0 < remaining <= self.reminder_days):
            return None
        if order.reminder_sent_on == now.date():
            return None
        return ReminderDecision(order=order, days_remaining=remaining)

    def check_overdue(
            self, order: Order, now: datetime, policy: Optional[LateFeePolicy]
    ) -> Optional[OverdueDecision]:
        """Delivered orders whose end date has passed move to overdue."""
        if order.status != OrderStatus.DELIVERED or order.end_date > now:
            return None
        fee = compute_late_fee(order, policy, now, self.fallback_fee_per_day)
        return OverdueDecision(order=order, days_overdue=max(0, days_overdue(order.end_date, now)), fee=fee)

    def check_fee_recompute(
            self, order: Order, now: datetime, policy: Optional[LateFeePolicy]
    ) -> Optional[FeeDecision]:
        """
        Recompute the late fee from scratch. Only the increase over the fee
        already stored is added to the balance, so repeated runs never charge
        the same days twice. A lower result is ignored: the fee never shrinks
        while the order is overdue.
        """
        if order.status != OrderStatus.OVERDUE or order.end_date > now:
            return None
        new_fee = compute_late_fee(order, policy, now, self.fallback_fee_per_day)
        if new_fee <= order.late_fee:
            return None
        delta = new_fee - order.late_fee
        return FeeDecision(
            order=order,
            new_fee=new_fee,
            delta=delta,
            new_remaining=order.remaining_amount + delta,
        )
