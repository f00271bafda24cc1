"""
Background scheduler for the rental lifecycle.

Three independent periodic triggers, each driven by its own cron expression:

- reminders: daily, emails customers whose delivered order is due back soon
- overdue:   daily, moves delivered orders past their end date to `overdue`
- late_fees: hourly, recomputes the late fee of every overdue order

Each trigger owns one daemon thread. Sweeps themselves are serialised with a
single lock so there is only ever one writer, and every store write carries
an expected-status guard so a concurrent external change (e.g. the customer
returning the item mid-sweep) is never clobbered.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..exceptions import (
    ConfigurationError,
    InvariantViolation,
    NotificationDeliveryError,
    OrderNotFoundError,
    StatusConflictError,
    TransientStoreError,
)
from ..models.order import Order
from ..utils.constants import SWEEP_WARN_FRACTION, OrderStatus, Sweep
from ..utils.dates import local_now, localize, to_iso
from .cron import CronSchedule
from .lifecycle import LifecycleEvaluator

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    """Counters for one execution of a sweep."""
    sweep: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_seconds: float = 0.0
    candidates: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    flagged: int = 0
    notified: int = 0
    notification_failures: int = 0
    order_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sweep": self.sweep,
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at) if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
            "candidates": self.candidates,
            "applied": self.applied,
            "skipped": self.skipped,
            "failed": self.failed,
            "flagged": self.flagged,
            "notified": self.notified,
            "notification_failures": self.notification_failures,
            "order_ids": list(self.order_ids),
        }


class PeriodicTrigger:
    """
    Fires `job` at every minute matched by `schedule` (wall-clock time in `tz`).

    stop() lets an in-flight job finish but no further tick fires. Ticks that
    fall due while the job is still running are skipped, never queued.
    """

    def __init__(self, name: str, schedule: CronSchedule, tz, job: Callable[[], object]):
        self.name = name
        self.schedule = schedule
        self.tz = tz
        self.job = job
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

        self.next_fire_at: Optional[datetime] = None
        self.last_run_at: Optional[datetime] = None
        self.last_duration: Optional[float] = None
        self.last_result: Optional[SweepResult] = None
        self.last_error: Optional[str] = None
        self.skipped_ticks = 0

    # ---------- lifecycle ----------
    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._thread = threading.Thread(
                target=self._loop, args=(stop_event,), name=f"sweep-{self.name}", daemon=True)
            self._thread.start()
        logger.info("Trigger %s started (%s)", self.name, self.schedule.expression)

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        with self._lock:
            if self._stop_event is not None:
                self._stop_event.set()
            thread = self._thread
            self.next_fire_at = None
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Trigger %s stopped", self.name)

    # ---------- timing ----------
    def next_fire_after(self, moment: datetime) -> datetime:
        """Next fire time after `moment`, as an aware datetime in this trigger's timezone."""
        wall = moment.astimezone(self.tz).replace(tzinfo=None)
        return localize(self.schedule.next_after(wall), self.tz)

    def _loop(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            now = local_now(self.tz)
            fire_at = self.next_fire_after(now)
            self.next_fire_at = fire_at
            if stop_event.wait(max(0.0, (fire_at - now).total_seconds())):
                break
            self._fire(fire_at)

    def _fire(self, fire_at: datetime) -> None:
        started = time.monotonic()
        try:
            self.job()
        except Exception:
            # The timer must survive a failed sweep; the next tick retries.
            logger.exception("Sweep %s failed; retrying on next tick", self.name)
        duration = time.monotonic() - started
        self._check_liveness(fire_at, duration)

    def _check_liveness(self, fire_at: datetime, duration: float) -> None:
        finished = fire_at + timedelta(seconds=duration)
        following = self.next_fire_after(fire_at)
        gap = (following - fire_at).total_seconds()
        if gap > 0 and duration > SWEEP_WARN_FRACTION * gap:
            logger.warning("Sweep %s took %.1fs of its %.0fs interval", self.name, duration, gap)

        missed = 0
        while following <= finished and missed < 10000:
            missed += 1
            following = self.next_fire_after(following)
        if missed:
            self.skipped_ticks += missed
            logger.warning("Sweep %s overran its schedule; %d tick(s) skipped", self.name, missed)

    # ---------- bookkeeping ----------
    def record(self, started_at: datetime, duration: float,
               result: Optional[SweepResult] = None, error: Optional[BaseException] = None) -> None:
        self.last_run_at = started_at
        self.last_duration = duration
        if error is None:
            self.last_result = result
            self.last_error = None
        else:
            self.last_error = f"{type(error).__name__}: {error}"

    def status(self) -> dict:
        return {
            "cron": self.schedule.expression,
            "running": self.running,
            "next_fire_at": to_iso(self.next_fire_at) if self.next_fire_at else None,
            "last_run_at": to_iso(self.last_run_at) if self.last_run_at else None,
            "last_duration_seconds": round(self.last_duration, 3) if self.last_duration is not None else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "last_error": self.last_error,
            "skipped_ticks": self.skipped_ticks,
        }


class LifecycleScheduler:
    """
    Drives the reminder, overdue and late-fee sweeps.

    Collaborators:
      - store: query_orders / update_order_status / update_order_fee /
        mark_reminder_sent / flag_for_review / get_active_late_fee_policy
      - notifier: send_reminder / send_overdue_notice
      - settings: SchedulerSettings
      - clock: returns the aware "now" used by sweeps (defaults to the
        configured timezone's current time)

    The run_*_sweep methods are the manual triggers; timed ticks call the
    exact same run_sweep path.
    """

    def __init__(self, store, notifier, settings, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.notifier = notifier
        self.settings = settings
        self.evaluator = LifecycleEvaluator(settings.reminder_days, settings.fallback_fee_per_day)
        self._clock = clock or (lambda: local_now(settings.timezone))
        self._sweep_lock = threading.Lock()

        self._sweeps = {
            Sweep.REMINDERS: self._reminder_sweep,
            Sweep.OVERDUE: self._overdue_sweep,
            Sweep.LATE_FEES: self._fee_sweep,
        }
        schedules = {
            Sweep.REMINDERS: settings.reminder_cron,
            Sweep.OVERDUE: settings.overdue_cron,
            Sweep.LATE_FEES: settings.late_fee_cron,
        }
        self.triggers = {
            name: PeriodicTrigger(name, schedules[name], settings.timezone,
                                  job=lambda n=name: self.run_sweep(n))
            for name in Sweep.ALL
        }

    # ---------- lifecycle ----------
    @property
    def running(self) -> bool:
        return any(t.running for t in self.triggers.values())

    def start(self) -> None:
        """Activate all three triggers. Calling start() on a running scheduler is a no-op."""
        logger.info("Starting lifecycle scheduler...")
        for trigger in self.triggers.values():
            trigger.start()
        logger.info("Lifecycle scheduler started")

    def stop(self, wait: bool = False, timeout: Optional[float] = None) -> None:
        """Deactivate all three triggers. An in-flight sweep is allowed to finish."""
        logger.info("Stopping lifecycle scheduler...")
        for trigger in self.triggers.values():
            trigger.stop(wait=wait, timeout=timeout)
        logger.info("Lifecycle scheduler stopped")

    def status(self) -> dict:
        return {
            "running": self.running,
            "timezone": str(self.settings.timezone),
            "reminder_days": self.settings.reminder_days,
            "fallback_fee_per_day": (str(self.settings.fallback_fee_per_day)
                                     if self.settings.fallback_fee_per_day is not None else None),
            "triggers": {name: t.status() for name, t in self.triggers.items()},
        }

    # ---------- manual triggers ----------
    def run_sweep(self, name: str, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep immediately. Raises ValueError for an unknown sweep and
        re-raises failures of the initial store query (the sweep as a whole failed).
        """
        try:
            sweep = self._sweeps[name]
        except KeyError:
            raise ValueError(f"Unknown sweep: {name!r}") from None

        now = now or self._clock()
        trigger = self.triggers[name]
        started = time.monotonic()
        with self._sweep_lock:
            try:
                result = sweep(now)
            except Exception as e:
                trigger.record(now, time.monotonic() - started, error=e)
                raise
        result.duration_seconds = time.monotonic() - started
        result.finished_at = self._clock()
        trigger.record(now, result.duration_seconds, result=result)
        logger.info(
            "Sweep %s finished: candidates=%d applied=%d skipped=%d failed=%d notified=%d",
            name, result.candidates, result.applied, result.skipped, result.failed, result.notified,
        )
        return result

    def run_reminder_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self.run_sweep(Sweep.REMINDERS, now)

    def run_overdue_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self.run_sweep(Sweep.OVERDUE, now)

    def run_fee_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        return self.run_sweep(Sweep.LATE_FEES, now)

    # ---------- sweeps ----------
    def _reminder_sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(Sweep.REMINDERS, started_at=now)
        window_end = now + timedelta(days=self.settings.reminder_days)
        candidates = self._query(result, [OrderStatus.DELIVERED], end_before=window_end, end_after=now)
        for raw in candidates:
            self._process(result, raw, lambda order: self._remind(result, order, now))
        return result

    def _overdue_sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(Sweep.OVERDUE, started_at=now)
        candidates = self._query(result, [OrderStatus.DELIVERED], end_before=now)
        policy = self._active_policy() if candidates else None
        for raw in candidates:
            self._process(result, raw, lambda order: self._mark_overdue(result, order, now, policy))
        return result

    def _fee_sweep(self, now: datetime) -> SweepResult:
        result = SweepResult(Sweep.LATE_FEES, started_at=now)
        candidates = self._query(result, [OrderStatus.OVERDUE], end_before=now)
        policy = self._active_policy() if candidates else None
        for raw in candidates:
            self._process(result, raw, lambda order: self._recompute_fee(result, order, now, policy))
        return result

    # ---------- per-order actions ----------
    def _remind(self, result: SweepResult, order: Order, now: datetime) -> bool:
        decision = self.evaluator.check_reminder(order, now)
        if decision is None:
            return False
        sent = self._notify(result, order, lambda: self.notifier.send_reminder(order, decision.days_remaining))
        if sent:
            self.store.mark_reminder_sent(order.order_id, now.date())
            logger.info("Reminder sent for order %s (%d day(s) left)", order.reference, decision.days_remaining)
        return sent

    def _mark_overdue(self, result: SweepResult, order: Order, now: datetime, policy) -> bool:
        decision = self.evaluator.check_overdue(order, now, policy)
        if decision is None:
            return False
        self.store.update_order_status(
            order.order_id, OrderStatus.OVERDUE, expected_status=OrderStatus.DELIVERED)
        logger.info("Order %s marked overdue (%d day(s), fee %s)",
                    order.reference, decision.days_overdue, decision.fee)
        self._notify(result, order,
                     lambda: self.notifier.send_overdue_notice(order, decision.days_overdue, decision.fee))
        return True

    def _recompute_fee(self, result: SweepResult, order: Order, now: datetime, policy) -> bool:
        decision = self.evaluator.check_fee_recompute(order, now, policy)
        if decision is None:
            return False
        self.store.update_order_fee(
            order.order_id,
            decision.new_fee,
            decision.new_remaining,
            expected_status=OrderStatus.OVERDUE,
            expected_late_fee=order.late_fee,
        )
        logger.info("Late fee for order %s updated to %s (+%s)",
                    order.reference, decision.new_fee, decision.delta)
        return True

    # ---------- helpers ----------
    def _query(self, result: SweepResult, statuses, end_before=None, end_after=None) -> list:
        try:
            orders = self.store.query_orders(statuses, end_before=end_before, end_after=end_after)
        except TransientStoreError as e:
            logger.error("Sweep %s aborted: order query failed (%s)", result.sweep, e.message)
            raise
        result.candidates = len(orders)
        return orders

    def _active_policy(self):
        """Fresh lookup on every sweep so policy changes apply on the next tick."""
        try:
            policy = self.store.get_active_late_fee_policy()
        except TransientStoreError as e:
            logger.error("Late fee policy lookup failed (%s)", e.message)
            raise
        except ConfigurationError as e:
            logger.error("Active late fee policy is invalid (%s)", e.message)
            raise
        if policy is None and self.settings.fallback_fee_per_day is None:
            logger.warning("No active late fee policy and no LATE_FEE_PER_DAY fallback; late fees will be 0")
        return policy

    def _notify(self, result: SweepResult, order: Order, send: Callable[[], None]) -> bool:
        """Send a notification; failures are logged and counted, never raised."""
        try:
            send()
        except NotificationDeliveryError as e:
            result.notification_failures += 1
            logger.warning("Notification for order %s failed: %s", order.reference, e.message)
            return False
        result.notified += 1
        return True

    def _process(self, result: SweepResult, raw: dict, action: Callable[[Order], bool]) -> None:
        """Per-order error boundary: nothing raised here may abort the sweep."""
        oid = raw.get("order_id") or raw.get("id")
        try:
            order = Order.from_dict(raw)
            applied = action(order)
        except InvariantViolation as e:
            result.failed += 1
            self._flag(result, oid, e.message)
            return
        except StatusConflictError as e:
            result.skipped += 1
            logger.info("Order %s changed concurrently, skipping: %s", oid, e.message)
            return
        except (TransientStoreError, OrderNotFoundError) as e:
            result.failed += 1
            logger.error("Order %s skipped this tick: %s", oid, e.message)
            return
        except Exception:
            result.failed += 1
            logger.exception("Unexpected error processing order %s", oid)
            return

        if applied:
            result.applied += 1
            result.order_ids.append(oid)
        else:
            result.skipped += 1

    def _flag(self, result: SweepResult, order_id, reason: str) -> None:
        logger.warning("Order %s flagged for manual review: %s", order_id, reason)
        if order_id is None:
            return
        try:
            if self.store.flag_for_review(order_id, reason):
                result.flagged += 1
        except TransientStoreError as e:
            logger.error("Could not flag order %s for review: %s", order_id, e.message)
