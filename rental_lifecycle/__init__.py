from flask import Flask
from flask_mail import Mail

from .config import Config, SchedulerSettings
from .controllers.scheduler import bp as scheduler_bp
from .models.store import Store
from .services.notification_service import (
    FanOutNotificationSink,
    InAppNotificationSink,
    LoggingNotificationSink,
    MailNotificationSink,
)
from .services.scheduler import LifecycleScheduler


def build_notifier(app, store):
    """In-app notifications always; email too when MAIL_SERVER is configured."""
    sinks = [LoggingNotificationSink(), InAppNotificationSink(store)]
    if app.config.get("MAIL_SERVER"):
        mail = Mail(app)
        sinks.append(MailNotificationSink(app, mail, app.config.get("MAIL_DEFAULT_SENDER")))
    return FanOutNotificationSink(sinks)


def create_app(overrides=None, store=None, notifier=None, clock=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    store = store or Store.instance(app.config.get("RENTAL_DATA_PATH"))
    settings = SchedulerSettings.from_mapping(app.config)
    scheduler = LifecycleScheduler(store, notifier or build_notifier(app, store), settings, clock=clock)
    app.extensions["lifecycle_scheduler"] = scheduler

    app.register_blueprint(scheduler_bp)

    if app.config.get("SCHEDULER_AUTOSTART"):
        scheduler.start()

    return app
