from datetime import datetime, timedelta, timezone

from rental_lifecycle import create_app
from rental_lifecycle.models.store import Store
from rental_lifecycle.utils.constants import DEFAULT_POLICY, OrderStatus


def ensure_default_policy(store: Store):
    """
    Ensure an active late fee policy exists.
    - If one is active: leave it alone (idempotent).
    - If not: create the default 5% daily / 50% cap / 24h grace policy.
    """
    if store.get_active_late_fee_policy() is None:
        return store.create_late_fee_policy(dict(DEFAULT_POLICY))
    return None


def main():
    app = create_app()
    with app.app_context():
        store = Store.instance()
        ensure_default_policy(store)

        # ---- Demo orders (create only if none exist) ----
        if not store.orders:
            now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
            demo = [
                # due back tomorrow -> reminder
                ("Asha Rao", "asha@example.com", OrderStatus.DELIVERED, -4, 1, "1200.00"),
                # ended three days ago -> overdue + late fee
                ("Vikram Shah", "vikram@example.com", OrderStatus.DELIVERED, -10, -3, "1000.00"),
                # already overdue for a week
                ("Meera Iyer", "meera@example.com", OrderStatus.OVERDUE, -14, -7, "800.00"),
                # returned: never touched by the scheduler
                ("Rohan Das", "rohan@example.com", OrderStatus.RETURNED, -9, -2, "650.00"),
            ]
            for name, email, status, start_days, end_days, total in demo:
                store.create_order({
                    "customer_name": name,
                    "customer_email": email,
                    "status": status,
                    "start_date": (now + timedelta(days=start_days)).isoformat(),
                    "end_date": (now + timedelta(days=end_days)).isoformat(),
                    "total_amount": total,
                    "remaining_amount": "0.00",
                })

        store.save()

        print("Seed complete.")
        print(f"Orders: {len(store.orders)}  Policies: {len(store.policies)}")


if __name__ == "__main__":
    main()
