"""
Periodic maintenance: OTP and token sweeps on an APScheduler interval.

Each run pushes its own application context, so it gets its own database
session and never shares one with request handling.
"""
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MAX_INSTANCES, EVENT_JOB_MISSED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from security.errors import Unavailable
from security.otp import sweep_otps
from security.tokens import sweep_expired_tokens

SWEEP_JOB_ID = "auth-sweeps"


def run_sweeps(app) -> dict:
    with app.app_context():
        result = {}
        try:
            result["otp_expired"], result["otp_deleted"] = sweep_otps()
        except Unavailable:
            app.logger.warning("otp sweep skipped, store unavailable")
        try:
            result["tokens_deleted"] = sweep_expired_tokens()
        except Unavailable:
            app.logger.warning("token sweep skipped, store unavailable")
        return result


def create_scheduler(app) -> BackgroundScheduler:
    interval = app.config.get("SWEEP_INTERVAL_SECONDS", 3600)
    scheduler = BackgroundScheduler(timezone="UTC", daemon=True)

    def _on_event(event):
        if getattr(event, "exception", None):
            app.logger.error("sweep job failed: %s", event.exception)
        else:
            app.logger.warning("sweep job event code=%s", event.code)

    scheduler.add_listener(_on_event, EVENT_JOB_MISSED | EVENT_JOB_MAX_INSTANCES | EVENT_JOB_ERROR)
    scheduler.add_job(
        run_sweeps,
        trigger=IntervalTrigger(seconds=interval),
        args=[app],
        id=SWEEP_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    return scheduler
