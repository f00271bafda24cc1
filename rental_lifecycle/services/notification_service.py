"""
Outbound notifications for return reminders and overdue notices.

The scheduler treats every sink as fire-and-forget: a sink either returns
or raises NotificationDeliveryError, and delivery guarantees beyond that
belong to the sink.
"""

import logging
import smtplib
from decimal import Decimal

from flask_mail import Message

from ..exceptions import NotificationDeliveryError, TransientStoreError
from ..models.order import Order

logger = logging.getLogger(__name__)


# -------- message text --------
def reminder_subject(order: Order) -> str:
    return f"Return Reminder - {order.reference}"


def reminder_body(order: Order, days_remaining: int) -> str:
    day_word = "day" if days_remaining == 1 else "days"
    name = order.customer_name or "there"
    return (
        f"Hi {name},\n\n"
        f"Your rental {order.reference} is due back in {days_remaining} {day_word} "
        f"({order.end_date:%Y-%m-%d %H:%M %Z}).\n"
        "Please arrange the return on time to avoid late fees."
    )


def overdue_subject(order: Order) -> str:
    return f"Overdue Rental - {order.reference}"


def overdue_body(order: Order, days_overdue: int, fee: Decimal) -> str:
    day_word = "day" if days_overdue == 1 else "days"
    name = order.customer_name or "there"
    return (
        f"Hi {name},\n\n"
        f"Your rental {order.reference} was due on {order.end_date:%Y-%m-%d %H:%M %Z} "
        f"and is now {days_overdue} {day_word} overdue.\n"
        f"Current late fee: {fee:.2f}.\n"
        "Please return the items as soon as possible."
    )


# -------- sinks --------
class NotificationSink:
    """Interface for anything that can notify a customer about their order."""

    def send_reminder(self, order: Order, days_remaining: int) -> None:
        raise NotImplementedError

    def send_overdue_notice(self, order: Order, days_overdue: int, fee: Decimal) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Writes notifications to the log only. Default when nothing else is configured."""

    def send_reminder(self, order: Order, days_remaining: int) -> None:
        logger.info("Reminder for order %s: %d day(s) remaining", order.reference, days_remaining)

    def send_overdue_notice(self, order: Order, days_overdue: int, fee: Decimal) -> None:
        logger.info("Overdue notice for order %s: %d day(s) overdue, fee %s",
                    order.reference, days_overdue, fee)


class InAppNotificationSink(NotificationSink):
    """Stores notifications in the store so the storefront can show them to the customer."""

    def __init__(self, store):
        self.store = store

    def _add(self, record: dict) -> None:
        try:
            self.store.add_notification(record)
        except TransientStoreError as e:
            raise NotificationDeliveryError(f"Error: could not store notification ({e.message})") from e

    def send_reminder(self, order: Order, days_remaining: int) -> None:
        self._add({
            "order_id": order.order_id,
            "type": "return_reminder",
            "title": reminder_subject(order),
            "message": reminder_body(order, days_remaining),
            "days_remaining": days_remaining,
        })

    def send_overdue_notice(self, order: Order, days_overdue: int, fee: Decimal) -> None:
        self._add({
            "order_id": order.order_id,
            "type": "overdue_notice",
            "title": overdue_subject(order),
            "message": overdue_body(order, days_overdue, fee),
            "days_overdue": days_overdue,
            "late_fee": f"{fee:.2f}",
        })


class MailNotificationSink(NotificationSink):
    """
    Emails the customer through Flask-Mail.
    Sends run inside an app context because the scheduler threads have none.
    """

    def __init__(self, app, mail, sender: str | None = None):
        self.app = app
        self.mail = mail
        self.sender = sender

    def _send(self, order: Order, subject: str, body: str) -> None:
        if not order.customer_email:
            raise NotificationDeliveryError(f"Error: order {order.reference} has no customer email")
        try:
            with self.app.app_context():
                msg = Message(
                    subject=subject,
                    recipients=[order.customer_email],
                    body=body,
                    sender=self.sender or self.app.config.get("MAIL_DEFAULT_SENDER"),
                )
                self.mail.send(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryError(f"Error: mail to {order.customer_email} failed ({e})") from e
        logger.info("Email sent to %s: %s", order.customer_email, subject)

    def send_reminder(self, order: Order, days_remaining: int) -> None:
        self._send(order, reminder_subject(order), reminder_body(order, days_remaining))

    def send_overdue_notice(self, order: Order, days_overdue: int, fee: Decimal) -> None:
        self._send(order, overdue_subject(order), overdue_body(order, days_overdue, fee))


class FanOutNotificationSink(NotificationSink):
    """
    Delivers to every wrapped sink. One failing sink does not stop the
    others; failures are collected and raised together afterwards.
    """

    def __init__(self, sinks):
        self.sinks = list(sinks)

    def _each(self, call) -> None:
        errors = []
        for sink in self.sinks:
            try:
                call(sink)
            except NotificationDeliveryError as e:
                errors.append(f"{type(sink).__name__}: {e.message}")
        if errors:
            raise NotificationDeliveryError("; ".join(errors))

    def send_reminder(self, order: Order, days_remaining: int) -> None:
        self._each(lambda s: s.send_reminder(order, days_remaining))

    def send_overdue_notice(self, order: Order, days_overdue: int, fee: Decimal) -> None:
        self._each(lambda s: s.send_overdue_notice(order, days_overdue, fee))
