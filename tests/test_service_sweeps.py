"""
End-to-end sweep behaviour against a real store and a recording notification sink.
"""

import logging
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW, add_order, clear_policies, make_settings, use_policy
from rental_lifecycle.exceptions import TransientStoreError
from rental_lifecycle.services.scheduler import LifecycleScheduler


# ---------- reminder sweep ----------
def test_reminder_sent_once_with_days_remaining(scheduler, store, sink):
    due_soon = add_order(store, "delivered", timedelta(days=1, hours=6))
    add_order(store, "delivered", timedelta(days=5))

    result = scheduler.run_reminder_sweep()

    assert sink.reminders == [(due_soon, 2)]
    assert result.applied == 1
    assert result.notified == 1
    assert store.get_order(due_soon)["reminder_sent_on"] == NOW.date().isoformat()


def test_reminder_not_resent_same_day(scheduler, store, sink):
    add_order(store, "delivered", timedelta(days=1))
    scheduler.run_reminder_sweep()
    result = scheduler.run_reminder_sweep(now=NOW + timedelta(hours=2))
    assert len(sink.reminders) == 1
    assert result.applied == 0


def test_reminder_repeats_next_day(scheduler, store, sink):
    oid = add_order(store, "delivered", timedelta(days=2))
    scheduler.run_reminder_sweep()
    scheduler.run_reminder_sweep(now=NOW + timedelta(days=1))
    assert sink.reminders == [(oid, 2), (oid, 1)]


def test_reminder_failure_not_recorded_as_sent(scheduler, store, sink):
    oid = add_order(store, "delivered", timedelta(days=1))
    sink.fail = True
    result = scheduler.run_reminder_sweep()
    assert result.notification_failures == 1
    assert result.applied == 0
    assert result.order_ids == []
    assert store.get_order(oid)["reminder_sent_on"] is None

    # retried on the next tick once the sink recovers
    sink.fail = False
    scheduler.run_reminder_sweep(now=NOW + timedelta(minutes=5))
    assert sink.reminders == [(oid, 1)]


# ---------- overdue sweep ----------
def test_overdue_transition_and_notice(scheduler, store, sink):
    use_policy(store)  # 5% daily, 20% cap, 24h grace
    late = add_order(store, "delivered", -timedelta(days=3))
    on_time = add_order(store, "delivered", timedelta(days=3))

    result = scheduler.run_overdue_sweep()

    assert store.get_order(late)["status"] == "overdue"
    assert store.get_order(on_time)["status"] == "delivered"
    assert sink.overdue == [(late, 3, Decimal("100.00"))]
    assert result.applied == 1
    assert result.order_ids == [late]


def test_every_passed_delivered_order_becomes_overdue(scheduler, store, sink):
    ids = [add_order(store, "delivered", -timedelta(hours=h)) for h in (0, 1, 30, 24 * 40)]
    scheduler.run_overdue_sweep()
    for oid in ids:
        assert store.get_order(oid)["status"] == "overdue"
    assert all(fee >= 0 for _, _, fee in sink.overdue)


def test_notification_failure_keeps_status(scheduler, store, sink):
    oid = add_order(store, "delivered", -timedelta(days=2))
    sink.fail = True
    result = scheduler.run_overdue_sweep()
    assert store.get_order(oid)["status"] == "overdue"
    assert result.applied == 1
    assert result.notification_failures == 1


def test_overdue_without_policy_uses_fallback(scheduler, store, sink):
    clear_policies(store)
    add_order(store, "delivered", -timedelta(days=3))
    scheduler.run_overdue_sweep()
    assert sink.overdue[0][2] == Decimal("150.00")


def test_no_policy_and_no_fallback_warns_and_charges_nothing(store, sink, caplog):
    clear_policies(store)
    sched = LifecycleScheduler(store, sink, make_settings(LATE_FEE_PER_DAY=""), clock=lambda: NOW)
    oid = add_order(store, "overdue", -timedelta(days=3))
    with caplog.at_level(logging.WARNING):
        result = sched.run_fee_sweep()
    assert "no LATE_FEE_PER_DAY fallback" in caplog.text
    assert result.applied == 0
    assert store.get_order(oid)["late_fee"] == "0.00"


# ---------- fee sweep ----------
def test_fee_sweep_applies_delta_only(scheduler, store):
    use_policy(store, daily="5", cap="50", grace=24)
    oid = add_order(store, "overdue", -timedelta(days=3), remaining_amount="200.00")

    scheduler.run_fee_sweep()
    o = store.get_order(oid)
    assert o["late_fee"] == "100.00"
    assert o["remaining_amount"] == "300.00"

    # same moment again: nothing new to charge
    scheduler.run_fee_sweep(now=NOW)
    assert store.get_order(oid)["remaining_amount"] == "300.00"

    # a day later one more billable day
    scheduler.run_fee_sweep(now=NOW + timedelta(days=1))
    o = store.get_order(oid)
    assert o["late_fee"] == "150.00"
    assert o["remaining_amount"] == "350.00"


def test_fee_stops_at_cap(scheduler, store):
    use_policy(store)  # cap 200 on 1000
    oid = add_order(store, "overdue", -timedelta(days=10))
    for day in range(5):
        scheduler.run_fee_sweep(now=NOW + timedelta(days=day))
    o = store.get_order(oid)
    assert o["late_fee"] == "200.00"
    assert o["remaining_amount"] == "200.00"


def test_policy_change_applies_next_tick(scheduler, store):
    use_policy(store, daily="5", cap="50", grace=24)
    oid = add_order(store, "overdue", -timedelta(days=3))
    scheduler.run_fee_sweep()
    assert store.get_order(oid)["late_fee"] == "100.00"

    use_policy(store, daily="10", cap="50", grace=0)
    scheduler.run_fee_sweep()
    assert store.get_order(oid)["late_fee"] == "300.00"


# ---------- inert statuses ----------
@pytest.mark.parametrize("status", ["cancelled", "returned", "completed", "pending", "confirmed"])
def test_closed_orders_never_touched(scheduler, store, sink, status):
    ids = [add_order(store, status, delta) for delta in (-timedelta(days=30), -timedelta(hours=1), timedelta(days=1))]
    before = {oid: store.get_order(oid) for oid in ids}

    for sweep in ("reminders", "overdue", "late_fees"):
        result = scheduler.run_sweep(sweep)
        assert result.candidates == 0

    assert {oid: store.get_order(oid) for oid in ids} == before
    assert sink.reminders == [] and sink.overdue == []


# ---------- failure handling ----------
def test_one_failing_order_does_not_abort_sweep(scheduler, store, monkeypatch):
    bad = add_order(store, "delivered", -timedelta(days=2))
    good = add_order(store, "delivered", -timedelta(days=1))
    real_update = store.update_order_status

    def flaky(order_id, status, expected_status=None):
        if order_id == bad:
            raise TransientStoreError("connection lost")
        return real_update(order_id, status, expected_status=expected_status)

    monkeypatch.setattr(store, "update_order_status", flaky)
    result = scheduler.run_overdue_sweep()

    assert result.failed == 1
    assert result.applied == 1
    assert store.get_order(good)["status"] == "overdue"
    assert store.get_order(bad)["status"] == "delivered"


def test_query_failure_fails_sweep(scheduler, store, monkeypatch):
    def down(*args, **kwargs):
        raise TransientStoreError("db down")

    monkeypatch.setattr(store, "query_orders", down)
    with pytest.raises(TransientStoreError):
        scheduler.run_overdue_sweep()
    assert "db down" in scheduler.triggers["overdue"].status()["last_error"]


def test_invalid_order_flagged_for_review(scheduler, store, sink):
    broken = add_order(store, "delivered", -timedelta(days=1))
    store.orders[broken]["end_date"] = None
    ok = add_order(store, "delivered", -timedelta(days=1))

    result = scheduler.run_overdue_sweep()

    assert result.flagged == 1
    assert store.get_order(broken)["needs_review"] is True
    assert store.get_order(ok)["status"] == "overdue"

    # flagged orders are left out of later sweeps
    assert scheduler.run_overdue_sweep().candidates == 0


def test_concurrent_return_is_not_clobbered(scheduler, store, monkeypatch):
    oid = add_order(store, "delivered", -timedelta(days=1))
    real_query = store.query_orders

    def stale_query(*args, **kwargs):
        rows = real_query(*args, **kwargs)
        # customer returns the item between the sweep's read and its write
        store.orders[oid]["status"] = "returned"
        return rows

    monkeypatch.setattr(store, "query_orders", stale_query)
    result = scheduler.run_overdue_sweep()

    assert store.get_order(oid)["status"] == "returned"
    assert result.skipped == 1
    assert result.applied == 0


def test_unknown_sweep(scheduler):
    with pytest.raises(ValueError):
        scheduler.run_sweep("weekly-inventory")


def test_manual_run_recorded_in_status(scheduler, store):
    add_order(store, "delivered", -timedelta(days=1))
    scheduler.run_overdue_sweep()
    status = scheduler.status()["triggers"]["overdue"]
    assert status["last_result"]["applied"] == 1
    assert status["last_error"] is None


def test_fee_on_delivered_order_is_flagged(scheduler, store):
    oid = add_order(store, "delivered", -timedelta(days=1), late_fee="10.00")
    result = scheduler.run_overdue_sweep()
    assert result.flagged == 1
    assert store.get_order(oid)["status"] == "delivered"
    assert "late fee" in store.get_order(oid)["review_reason"]


@pytest.mark.parametrize("field,value", [
    ("total_amount", "NaN"),
    ("total_amount", "Infinity"),
    ("remaining_amount", "sNaN"),
    ("late_fee", "-Infinity"),
])
def test_non_finite_amount_flagged_for_review(scheduler, store, field, value):
    oid = add_order(store, "overdue", -timedelta(days=3))
    store.orders[oid][field] = value

    result = scheduler.run_fee_sweep()

    assert result.flagged == 1
    assert store.get_order(oid)["needs_review"] is True
    assert scheduler.run_fee_sweep().candidates == 0


def test_infinite_total_flagged_on_overdue_sweep(scheduler, store, sink):
    oid = add_order(store, "delivered", -timedelta(days=3))
    store.orders[oid]["total_amount"] = "Infinity"

    result = scheduler.run_overdue_sweep()

    assert result.flagged == 1
    assert store.get_order(oid)["status"] == "delivered"
    assert sink.overdue == []
