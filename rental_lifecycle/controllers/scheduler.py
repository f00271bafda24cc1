from flask import Blueprint, current_app, jsonify

from ..exceptions import ConfigurationError, TransientStoreError
from ..utils.decorators import role_required

bp = Blueprint("scheduler", __name__, url_prefix="/staff/scheduler")


def _scheduler():
    return current_app.extensions["lifecycle_scheduler"]


@bp.get("/status")
@role_required("staff")
def status():
    """Running flag plus next/last run details for every trigger."""
    return jsonify(_scheduler().status())


@bp.post("/start")
@role_required("staff")
def start():
    sched = _scheduler()
    sched.start()
    return jsonify(success=True, message="Scheduler started", status=sched.status())


@bp.post("/stop")
@role_required("staff")
def stop():
    sched = _scheduler()
    sched.stop()
    return jsonify(success=True, message="Scheduler stopped", status=sched.status())


@bp.post("/run/<sweep>")
@role_required("staff")
def run_sweep(sweep):
    """Run one sweep now, through the same path the timers use."""
    try:
        result = _scheduler().run_sweep(sweep)
    except ValueError:
        return jsonify(error="unknown_sweep", message=f"Unknown sweep: {sweep}"), 404
    except TransientStoreError as e:
        return jsonify(error="store_unavailable", message=e.message), 503
    except ConfigurationError as e:
        return jsonify(error="configuration", message=e.message), 500
    return jsonify(success=True, result=result.to_dict())


@bp.get("/policy")
@role_required("staff")
def active_policy():
    """The late fee policy the next fee computation will use (null if none)."""
    try:
        policy = _scheduler().store.get_active_late_fee_policy()
    except ConfigurationError as e:
        return jsonify(error="configuration", message=e.message), 500
    return jsonify(policy=policy.to_dict() if policy else None)
