"""
Staff ops endpoints for the lifecycle scheduler.
"""

from datetime import timedelta

import pytest

from conftest import add_order
from rental_lifecycle.exceptions import TransientStoreError


@pytest.mark.parametrize("method,url", [
    ("get", "/staff/scheduler/status"),
    ("post", "/staff/scheduler/start"),
    ("post", "/staff/scheduler/run/overdue"),
    ("get", "/staff/scheduler/policy"),
])
def test_requires_staff(client, method, url):
    r = getattr(client, method)(url)
    assert r.status_code == 403


def test_customer_role_rejected(client):
    with client.session_transaction() as sess:
        sess["role"] = "customer"
    assert client.get("/staff/scheduler/status").status_code == 403


def test_status(staff_client):
    r = staff_client.get("/staff/scheduler/status")
    assert r.status_code == 200
    body = r.get_json()
    assert body["running"] is False
    assert set(body["triggers"]) == {"reminders", "overdue", "late_fees"}


def test_start_and_stop(staff_client):
    r = staff_client.post("/staff/scheduler/start")
    assert r.status_code == 200
    assert r.get_json()["status"]["running"] is True

    r = staff_client.post("/staff/scheduler/stop")
    assert r.get_json()["status"]["running"] is False


def test_manual_run(staff_client, store, sink):
    oid = add_order(store, "delivered", -timedelta(days=2))
    r = staff_client.post("/staff/scheduler/run/overdue")
    assert r.status_code == 200
    result = r.get_json()["result"]
    assert result["applied"] == 1
    assert result["order_ids"] == [oid]
    assert store.get_order(oid)["status"] == "overdue"
    assert len(sink.overdue) == 1


def test_unknown_sweep(staff_client):
    r = staff_client.post("/staff/scheduler/run/inventory")
    assert r.status_code == 404
    assert r.get_json()["error"] == "unknown_sweep"


def test_store_outage_is_503(staff_client, store, monkeypatch):
    def down(*args, **kwargs):
        raise TransientStoreError("db down")

    monkeypatch.setattr(store, "query_orders", down)
    r = staff_client.post("/staff/scheduler/run/late_fees")
    assert r.status_code == 503
    assert r.get_json()["error"] == "store_unavailable"


def test_active_policy(staff_client):
    body = staff_client.get("/staff/scheduler/policy").get_json()
    assert body["policy"]["daily_fee_percentage"] == "5.00"
    assert body["policy"]["grace_period_hours"] == 24


def test_no_active_policy(staff_client, store):
    store.policies.clear()
    assert staff_client.get("/staff/scheduler/policy").get_json() == {"policy": None}
