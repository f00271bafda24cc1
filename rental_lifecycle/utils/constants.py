# rental_lifecycle/utils/constants.py

"""
Global constants for order statuses, sweep names and configuration defaults.
These constants are imported by both models and services.
"""

# Money is stored as decimal strings with two places
MONEY_PLACES = "0.01"


class OrderStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERED = "delivered"
    OVERDUE = "overdue"
    RETURNED = "returned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = frozenset({PENDING, CONFIRMED, DELIVERED, OVERDUE, RETURNED, COMPLETED, CANCELLED})


class Sweep:
    REMINDERS = "reminders"
    OVERDUE = "overdue"
    LATE_FEES = "late_fees"

    ALL = (REMINDERS, OVERDUE, LATE_FEES)


# Statuses in which a non-zero late fee is allowed to exist
FEE_BEARING_STATES = {OrderStatus.OVERDUE, OrderStatus.RETURNED, OrderStatus.COMPLETED}

# --- Defaults (overridable from the environment) ---
DEFAULT_REMINDER_DAYS = 2
DEFAULT_LATE_FEE_PER_DAY = "50"
DEFAULT_REMINDER_CRON = "0 9 * * *"
DEFAULT_OVERDUE_CRON = "0 10 * * *"
DEFAULT_LATE_FEE_CRON = "0 * * * *"
DEFAULT_TIMEZONE = "UTC"

# Warn when a sweep uses more than this share of the gap to its next tick
SWEEP_WARN_FRACTION = 0.8

# Default late fee policy seeded into a fresh store
DEFAULT_POLICY = {
    "name": "Default Late Fee",
    "daily_fee_percentage": "5.00",
    "max_fee_percentage": "50.00",
    "grace_period_hours": 24,
    "is_active": True,
}
