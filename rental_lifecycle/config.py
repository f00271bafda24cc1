import os
from dataclasses import dataclass
from datetime import tzinfo
from decimal import Decimal
from typing import Mapping, Optional

import pytz

from .exceptions import ConfigurationError
from .services.cron import CronSchedule
from .utils.constants import (
    DEFAULT_LATE_FEE_CRON,
    DEFAULT_LATE_FEE_PER_DAY,
    DEFAULT_OVERDUE_CRON,
    DEFAULT_REMINDER_CRON,
    DEFAULT_REMINDER_DAYS,
    DEFAULT_TIMEZONE,
)
from .utils.dates import get_timezone
from .utils.money import to_decimal


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Secret key for sessions on the ops endpoints
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-change-me")

    # Pickle store location (None -> package default)
    RENTAL_DATA_PATH = os.environ.get("RENTAL_DATA_PATH")

    # Scheduler
    REMINDER_DAYS_BEFORE_RETURN = os.environ.get("REMINDER_DAYS_BEFORE_RETURN", str(DEFAULT_REMINDER_DAYS))
    LATE_FEE_PER_DAY = os.environ.get("LATE_FEE_PER_DAY", DEFAULT_LATE_FEE_PER_DAY)
    REMINDER_CRON = os.environ.get("REMINDER_CRON", DEFAULT_REMINDER_CRON)
    OVERDUE_CRON = os.environ.get("OVERDUE_CRON", DEFAULT_OVERDUE_CRON)
    LATE_FEE_CRON = os.environ.get("LATE_FEE_CRON", DEFAULT_LATE_FEE_CRON)
    SCHEDULER_TIMEZONE = os.environ.get("SCHEDULER_TIMEZONE", DEFAULT_TIMEZONE)
    SCHEDULER_AUTOSTART = _env_bool("SCHEDULER_AUTOSTART")

    # Mail (sink enabled only when MAIL_SERVER is set)
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "rentals@example.com")


@dataclass(frozen=True)
class SchedulerSettings:
    """Scheduler configuration, read once at startup. No hot reload."""
    reminder_days: int
    fallback_fee_per_day: Optional[Decimal]
    reminder_cron: CronSchedule
    overdue_cron: CronSchedule
    late_fee_cron: CronSchedule
    timezone: tzinfo

    @classmethod
    def from_mapping(cls, cfg: Mapping) -> "SchedulerSettings":
        """
        Build settings from a Flask config (or any mapping of the same keys).
        Raises ConfigurationError on invalid values.
        """
        raw_days = cfg.get("REMINDER_DAYS_BEFORE_RETURN", DEFAULT_REMINDER_DAYS)
        try:
            reminder_days = int(raw_days)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"REMINDER_DAYS_BEFORE_RETURN must be an integer, got {raw_days!r}") from e
        if reminder_days < 0:
            raise ConfigurationError("REMINDER_DAYS_BEFORE_RETURN must be >= 0")

        # Empty string disables the flat fallback fee
        raw_fee = cfg.get("LATE_FEE_PER_DAY", DEFAULT_LATE_FEE_PER_DAY)
        fallback = None
        if raw_fee is not None and str(raw_fee).strip() != "":
            try:
                fallback = to_decimal(raw_fee)
            except ValueError as e:
                raise ConfigurationError(f"LATE_FEE_PER_DAY must be a number, got {raw_fee!r}") from e
            if fallback < 0:
                raise ConfigurationError("LATE_FEE_PER_DAY must be >= 0")

        tz_name = cfg.get("SCHEDULER_TIMEZONE") or DEFAULT_TIMEZONE
        try:
            tz = get_timezone(tz_name)
        except pytz.UnknownTimeZoneError as e:
            raise ConfigurationError(f"Unknown SCHEDULER_TIMEZONE: {tz_name!r}") from e

        return cls(
            reminder_days=reminder_days,
            fallback_fee_per_day=fallback,
            reminder_cron=CronSchedule(cfg.get("REMINDER_CRON") or DEFAULT_REMINDER_CRON),
            overdue_cron=CronSchedule(cfg.get("OVERDUE_CRON") or DEFAULT_OVERDUE_CRON),
            late_fee_cron=CronSchedule(cfg.get("LATE_FEE_CRON") or DEFAULT_LATE_FEE_CRON),
            timezone=tz,
        )

    @classmethod
    def from_env(cls) -> "SchedulerSettings":
        return cls.from_mapping(os.environ)
