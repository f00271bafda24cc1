import atexit
import logging
import os
import pickle
import threading
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Optional

from ..exceptions import OrderNotFoundError, StatusConflictError, TransientStoreError
from ..utils.constants import DEFAULT_POLICY, OrderStatus
from ..utils.dates import as_datetime
from ..utils.money import ZERO, money_str, to_decimal
from .policy import LateFeePolicy

logger = logging.getLogger(__name__)

# ---- Paths ----
BASE_DIR = Path(__file__).resolve().parents[2]
DEFAULT_DATA_PATH = BASE_DIR / "data.pkl"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _date_str(value):
    """Store datetimes as ISO strings; leave anything else for the reader to validate."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class Store:
    """
    Pickle-backed order and late-fee-policy store.

    Records are plain dicts keyed by id. Every mutation is written through to
    disk; a failed write is rolled back in memory and surfaces as
    TransientStoreError so callers can retry on their next tick.
    """
    _inst = None
    _inst_lock = threading.Lock()
    _atexit_registered = False

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = str(path or DEFAULT_DATA_PATH)
        self.orders: dict[str, dict] = {}
        self.policies: dict[str, dict] = {}
        self.notifications: dict[str, dict] = {}
        self._rw = threading.RLock()

        logger.info("Store using file: %s", self.path)
        fresh = not os.path.exists(self.path)
        self._load()

        # Default late fee policy:
        # Created only when the file does not exist or is empty
        # (to avoid conflicts with seeded or test data)
        if fresh or (not self.orders and not self.policies):
            if not self.policies:
                self.create_late_fee_policy(dict(DEFAULT_POLICY))

        # Automatically save on exit (skipped in test environments)
        if not Store._atexit_registered and os.getenv("APP_ENV") != "test":
            atexit.register(self.save)
            Store._atexit_registered = True

    # ---------- Singleton ----------
    @classmethod
    def instance(cls, path: str | os.PathLike | None = None):
        """Return the global singleton instance of Store."""
        with cls._inst_lock:
            if cls._inst is None:
                cls._inst = Store(path or os.getenv("RENTAL_DATA_PATH") or DEFAULT_DATA_PATH)
        return cls._inst

    # ---------- Persistence ----------
    def _load(self):
        """Load data from the pickle file, or start empty if unavailable or invalid."""
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, "rb") as f:
                data = pickle.load(f)
        except Exception as e:
            logger.warning("Store load failed (%s); starting empty.", e)
            return

        if isinstance(data, dict):
            self.orders = data.get("orders", {}) or {}
            self.policies = data.get("policies", {}) or {}
            self.notifications = data.get("notifications", {}) or {}
            logger.info("Store loaded: orders=%d, policies=%d, notifications=%d",
                        len(self.orders), len(self.policies), len(self.notifications))
        else:
            # Handle incompatible data format: backup the old file and start empty
            try:
                bak = self.path + ".bak"
                os.replace(self.path, bak)
                logger.warning("Incompatible store (%s); backed up to %s. Starting empty.",
                               type(data).__name__, bak)
            except OSError as e:
                logger.error("Store backup failed: %s", e)

    def _dump(self):
        """Write the in-memory data to the pickle file safely (atomic replace)."""
        os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
        tmp = self.path + ".tmp"
        payload = {
            "orders": self.orders,
            "policies": self.policies,
            "notifications": self.notifications,
        }
        with open(tmp, "wb") as f:
            pickle.dump(payload, f, protocol=pickle.HIGHEST_PROTOCOL)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, self.path)

    def _commit(self, rollback):
        """Persist the current state; on I/O failure undo the change and raise TransientStoreError."""
        try:
            self._dump()
        except OSError as e:
            rollback()
            raise TransientStoreError(f"Error: could not write store ({e})") from e

    def save(self):
        """Thread-safe save method."""
        with self._rw:
            logger.info("Saving store to %s", self.path)
            self._dump()

    # ---------- Orders ----------
    def create_order(self, data: dict) -> str:
        """Create a new order record and return its ID."""
        with self._rw:
            oid = str(data.get("order_id") or uuid.uuid4())
            now = _utcnow_iso()
            self.orders[oid] = {
                "order_id": oid,
                "order_number": data.get("order_number") or f"ORD-{oid[:8].upper()}",
                "status": data.get("status", OrderStatus.PENDING),
                "start_date": _date_str(data.get("start_date")),
                "end_date": _date_str(data.get("end_date")),
                "total_amount": money_str(to_decimal(data.get("total_amount"), default=ZERO)),
                "remaining_amount": money_str(to_decimal(data.get("remaining_amount"), default=ZERO)),
                "late_fee": money_str(to_decimal(data.get("late_fee"), default=ZERO)),
                "customer_email": data.get("customer_email"),
                "customer_name": data.get("customer_name"),
                "reminder_sent_on": None,
                "needs_review": False,
                "review_reason": None,
                "created_at": now,
                "updated_at": now,
            }
            self._commit(lambda: self.orders.pop(oid, None))
            return oid

    def get_order(self, order_id: str) -> dict | None:
        """Get a copy of the order data by ID."""
        with self._rw:
            o = self.orders.get(str(order_id))
            return dict(o) if o else None

    def query_orders(
            self,
            statuses: Iterable[str],
            end_before: Optional[datetime] = None,
            end_after: Optional[datetime] = None,
            include_flagged: bool = False,
    ) -> list[dict]:
        """
        Return copies of orders whose status is in `statuses` and whose
        end_date falls in (end_after, end_before].
        Records with a missing or unparseable end_date are returned as well,
        so the caller can flag them for review; flagged records are left out
        unless include_flagged is set.
        """
        wanted = {s.lower() for s in statuses}
        out = []
        with self._rw:
            for o in self.orders.values():
                if (o.get("status") or "").lower() not in wanted:
                    continue
                if o.get("needs_review") and not include_flagged:
                    continue
                try:
                    end = as_datetime(o.get("end_date"))
                except ValueError:
                    out.append(dict(o))
                    continue
                if end_before is not None and end > end_before:
                    continue
                if end_after is not None and end <= end_after:
                    continue
                out.append(dict(o))
        out.sort(key=lambda x: str(x.get("end_date") or ""))
        return out

    def _get_for_update(self, order_id: str, expected_status: Optional[str]) -> dict:
        o = self.orders.get(str(order_id))
        if o is None:
            raise OrderNotFoundError(f"Error: order {order_id} not found")
        if expected_status is not None and o.get("status") != expected_status:
            raise StatusConflictError(
                f"Order {order_id} is '{o.get('status')}', expected '{expected_status}'",
                expected=expected_status,
                actual=o.get("status"),
            )
        return o

    def update_order_status(self, order_id: str, status: str, expected_status: Optional[str] = None) -> dict:
        """
        Set the order status. When expected_status is given the write only
        happens if the stored status still matches it (StatusConflictError otherwise).
        """
        if status not in OrderStatus.ALL:
            raise ValueError(f"Unknown order status: {status!r}")
        with self._rw:
            o = self._get_for_update(order_id, expected_status)
            before = dict(o)
            o.update({"status": status, "updated_at": _utcnow_iso()})
            self._commit(lambda: (o.clear(), o.update(before)))
            return dict(o)

    def update_order_fee(
            self,
            order_id: str,
            late_fee: Decimal,
            remaining_amount: Decimal,
            expected_status: Optional[str] = None,
            expected_late_fee: Optional[Decimal] = None,
    ) -> dict:
        """
        Store a recomputed late fee and the matching outstanding balance.
        expected_late_fee guards against the fee having moved since the
        caller read it (StatusConflictError otherwise).
        """
        with self._rw:
            o = self._get_for_update(order_id, expected_status)
            if expected_late_fee is not None and to_decimal(o.get("late_fee"), default=ZERO) != expected_late_fee:
                raise StatusConflictError(
                    f"Order {order_id} late fee is {o.get('late_fee')}, expected {expected_late_fee}")
            before = dict(o)
            o.update({
                "late_fee": money_str(late_fee),
                "remaining_amount": money_str(remaining_amount),
                "updated_at": _utcnow_iso(),
            })
            self._commit(lambda: (o.clear(), o.update(before)))
            return dict(o)

    def mark_reminder_sent(self, order_id: str, day: date) -> dict:
        """Record the calendar day a return reminder went out."""
        with self._rw:
            o = self._get_for_update(order_id, None)
            before = dict(o)
            o["reminder_sent_on"] = day.isoformat()
            self._commit(lambda: (o.clear(), o.update(before)))
            return dict(o)

    def flag_for_review(self, order_id: str, reason: str) -> bool:
        """Mark an order for manual review; return False if it no longer exists."""
        with self._rw:
            o = self.orders.get(str(order_id))
            if o is None:
                return False
            before = dict(o)
            o.update({"needs_review": True, "review_reason": reason, "updated_at": _utcnow_iso()})
            self._commit(lambda: (o.clear(), o.update(before)))
            return True

    def clear_review_flag(self, order_id: str) -> bool:
        with self._rw:
            o = self.orders.get(str(order_id))
            if o is None:
                return False
            before = dict(o)
            o.update({"needs_review": False, "review_reason": None, "updated_at": _utcnow_iso()})
            self._commit(lambda: (o.clear(), o.update(before)))
            return True

    # ---------- Late fee policies ----------
    def create_late_fee_policy(self, data: dict) -> str:
        """
        Validate and store a late fee policy. An active policy deactivates
        every other policy so at most one governs fee computation.
        """
        policy = LateFeePolicy.from_dict(data)
        with self._rw:
            pid = str(uuid.uuid4())
            before = {k: dict(v) for k, v in self.policies.items()}
            if policy.is_active:
                for p in self.policies.values():
                    p["is_active"] = False
            record = policy.to_dict()
            record.update({"policy_id": pid, "name": policy.name or "Late Fee Policy",
                           "created_at": _utcnow_iso()})
            self.policies[pid] = record

            def rollback():
                self.policies.clear()
                self.policies.update(before)

            self._commit(rollback)
            return pid

    def activate_late_fee_policy(self, policy_id: str) -> bool:
        """Make the given policy the only active one."""
        with self._rw:
            if policy_id not in self.policies:
                return False
            before = {k: dict(v) for k, v in self.policies.items()}
            for pid, p in self.policies.items():
                p["is_active"] = pid == policy_id

            def rollback():
                self.policies.clear()
                self.policies.update(before)

            self._commit(rollback)
            return True

    def get_active_late_fee_policy(self) -> Optional[LateFeePolicy]:
        """
        Return the active policy, or None if none is active.
        If several records are active the most recently created one wins;
        policies are never combined.
        """
        with self._rw:
            active = [p for p in self.policies.values() if p.get("is_active")]
        if not active:
            return None
        if len(active) > 1:
            logger.warning("%d active late fee policies found; using the most recent", len(active))
        active.sort(key=lambda p: str(p.get("created_at") or ""))
        return LateFeePolicy.from_dict(active[-1])

    # ---------- Notifications ----------
    def add_notification(self, record: dict) -> str:
        """Store an in-app notification record and return its ID."""
        with self._rw:
            nid = str(uuid.uuid4())
            self.notifications[nid] = dict(record, notification_id=nid, created_at=_utcnow_iso())
            self._commit(lambda: self.notifications.pop(nid, None))
            return nid

    def notifications_for_order(self, order_id: str) -> list[dict]:
        with self._rw:
            out = [dict(n) for n in self.notifications.values() if n.get("order_id") == order_id]
        out.sort(key=lambda n: n.get("created_at") or "")
        return out

