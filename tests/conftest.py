import os
import pathlib
import sys
from datetime import datetime, timedelta, timezone

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
os.environ.setdefault("APP_ENV", "test")

import pytest

from rental_lifecycle.config import SchedulerSettings
from rental_lifecycle.exceptions import NotificationDeliveryError
from rental_lifecycle.models.store import Store
from rental_lifecycle.services.notification_service import NotificationSink
from rental_lifecycle.services.scheduler import LifecycleScheduler

# Fixed "now" for every sweep test: 2026-03-10 12:00 UTC
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class RecordingSink(NotificationSink):
    """Collects notifications instead of sending them; can be told to fail."""

    def __init__(self):
        self.reminders = []
        self.overdue = []
        self.fail = False

    def send_reminder(self, order, days_remaining):
        if self.fail:
            raise NotificationDeliveryError("sink down")
        self.reminders.append((order.order_id, days_remaining))

    def send_overdue_notice(self, order, days_overdue, fee):
        if self.fail:
            raise NotificationDeliveryError("sink down")
        self.overdue.append((order.order_id, days_overdue, fee))


@pytest.fixture
def store(tmp_path):
    """A fresh pickle store in a temp dir (comes with the default 5%/50%/24h policy)."""
    return Store(tmp_path / "data.pkl")


@pytest.fixture
def sink():
    return RecordingSink()


def make_settings(**overrides):
    cfg = {
        "REMINDER_DAYS_BEFORE_RETURN": 2,
        "LATE_FEE_PER_DAY": "50",
        "REMINDER_CRON": "0 9 * * *",
        "OVERDUE_CRON": "0 10 * * *",
        "LATE_FEE_CRON": "0 * * * *",
        "SCHEDULER_TIMEZONE": "UTC",
    }
    cfg.update(overrides)
    return SchedulerSettings.from_mapping(cfg)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def scheduler(store, sink, settings):
    return LifecycleScheduler(store, sink, settings, clock=lambda: NOW)


def add_order(store, status, end, total="1000.00", **extra):
    """Create an order ending at `end` (datetime or timedelta relative to NOW)."""
    if isinstance(end, timedelta):
        end = NOW + end
    data = {
        "status": status,
        "start_date": (end - timedelta(days=7)).isoformat() if isinstance(end, datetime) else None,
        "end_date": end,
        "total_amount": total,
        "remaining_amount": extra.pop("remaining_amount", "0.00"),
        "customer_email": "customer@example.com",
        "customer_name": "Test Customer",
    }
    data.update(extra)
    return store.create_order(data)


def use_policy(store, daily="5", cap="20", grace=24):
    return store.create_late_fee_policy({
        "name": "Test Policy",
        "daily_fee_percentage": daily,
        "max_fee_percentage": cap,
        "grace_period_hours": grace,
        "is_active": True,
    })


def clear_policies(store):
    store.policies.clear()


@pytest.fixture
def client(store, sink):
    from rental_lifecycle import create_app
    app = create_app({"TESTING": True, "SECRET_KEY": "test"}, store=store, notifier=sink, clock=lambda: NOW)
    with app.test_client() as c:
        yield c
    app.extensions["lifecycle_scheduler"].stop(wait=True, timeout=5)


@pytest.fixture
def staff_client(client):
    with client.session_transaction() as sess:
        sess["role"] = "staff"
    return client
