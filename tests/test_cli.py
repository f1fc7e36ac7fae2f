from datetime import datetime, timedelta

from models import db
from models.user import User, UserStatus
from security.accounts import record_failed_attempt
from security.otp import issue_otp
from security.tokens import issue_token
from utils.scheduler import SWEEP_JOB_ID, create_scheduler, run_sweeps


def test_create_user_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["create-user", "cli@example.com", "--password", "long-enough-pw"])

    assert result.exit_code == 0, result.output
    assert User.query.filter_by(email="cli@example.com").one().status == UserStatus.ACTIVE


def test_create_user_command_rejects_bad_email(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["create-user", "nope", "--password", "long-enough-pw"])

    assert result.exit_code != 0
    assert "Invalid email" in result.output


def test_unlock_user_command(app, user):
    for _ in range(5):
        record_failed_attempt(user.id)

    result = app.test_cli_runner().invoke(args=["unlock-user", user.email])
    assert result.exit_code == 0, result.output
    assert db.session.get(User, user.id).status == UserStatus.ACTIVE


def test_sweep_commands(app, user):
    old = datetime.utcnow() - timedelta(days=10)
    issue_otp(user.id, "LOGIN", now=old)
    issue_token(user.id, now=old)

    runner = app.test_cli_runner()
    result = runner.invoke(args=["sweep-otps"])
    assert result.exit_code == 0
    assert "expired: 1, deleted: 1" in result.output

    result = runner.invoke(args=["sweep-tokens"])
    assert result.exit_code == 0
    assert "Tokens deleted: 1" in result.output


def test_run_sweeps_and_scheduler(app, user):
    issue_token(user.id, now=datetime.utcnow() - timedelta(days=1))
    assert run_sweeps(app) == {"otp_expired": 0, "otp_deleted": 0, "tokens_deleted": 1}

    scheduler = create_scheduler(app)
    job = scheduler.get_job(SWEEP_JOB_ID)
    assert job is not None
    assert job.trigger.interval == timedelta(seconds=app.config["SWEEP_INTERVAL_SECONDS"])
