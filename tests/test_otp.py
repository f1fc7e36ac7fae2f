import threading
from datetime import datetime, timedelta

import pytest

from models import db
from models.audit_log import AuditLog
from models.otp import Otp, OtpStatus, OtpType
from security.errors import AlreadyUsed, Expired, Mismatch, NotFound, UserNotFound
from security.otp import generate_code, issue_otp, sweep_otps, verify_otp


def _wrong(code):
    return "000000" if code != "000000" else "111111"


def test_generate_code_is_six_digits():
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6 and code.isdigit()


def test_issue_creates_pending_code(user):
    now = datetime(2026, 1, 1, 12, 0, 0)
    otp = issue_otp(user.id, OtpType.LOGIN, now=now)

    assert otp.status == OtpStatus.PENDING
    assert otp.attempts == 0
    assert otp.expiry_time == now + timedelta(seconds=300)
    assert len(otp.code) == 6 and otp.code.isdigit()


def test_issue_for_unknown_user(app):
    with pytest.raises(UserNotFound):
        issue_otp(9999, "LOGIN")


def test_issue_supersedes_previous_pending_code(user):
    first = issue_otp(user.id, OtpType.LOGIN)
    first_id = first.id
    issue_otp(user.id, OtpType.LOGIN)

    assert db.session.get(Otp, first_id).status == OtpStatus.EXPIRED


def test_verify_success_then_already_used(user):
    otp = issue_otp(user.id, OtpType.LOGIN)
    code = otp.code

    verified = verify_otp(user.id, OtpType.LOGIN, code)
    assert verified.status == OtpStatus.VERIFIED

    with pytest.raises(AlreadyUsed):
        verify_otp(user.id, OtpType.LOGIN, code)
    assert db.session.get(Otp, otp.id).status == OtpStatus.VERIFIED


def test_verify_without_code(user):
    with pytest.raises(NotFound):
        verify_otp(user.id, OtpType.LOGIN, "123456")


def test_verify_is_per_type(user):
    otp = issue_otp(user.id, OtpType.RESET)
    with pytest.raises(NotFound):
        verify_otp(user.id, OtpType.LOGIN, otp.code)


def test_correct_code_after_ttl_is_expired_not_mismatch(user):
    issued_at = datetime(2026, 1, 1, 12, 0, 0)
    otp = issue_otp(user.id, OtpType.LOGIN, now=issued_at)

    with pytest.raises(Expired):
        verify_otp(user.id, OtpType.LOGIN, otp.code, now=issued_at + timedelta(seconds=301))

    row = db.session.get(Otp, otp.id)
    assert row.status == OtpStatus.EXPIRED
    assert row.attempts == 0


def test_wrong_code_after_ttl_is_expired(user):
    issued_at = datetime(2026, 1, 1, 12, 0, 0)
    otp = issue_otp(user.id, OtpType.LOGIN, now=issued_at)

    with pytest.raises(Expired):
        verify_otp(user.id, OtpType.LOGIN, _wrong(otp.code), now=issued_at + timedelta(seconds=300))


def test_mismatch_counts_attempts_and_expires_past_cap(user):
    otp = issue_otp(user.id, OtpType.LOGIN)
    code = otp.code

    with pytest.raises(Mismatch) as exc:
        verify_otp(user.id, OtpType.LOGIN, _wrong(code))
    assert exc.value.details["attempts_remaining"] == 2

    with pytest.raises(Mismatch):
        verify_otp(user.id, OtpType.LOGIN, "abc")
    with pytest.raises(Mismatch) as exc:
        verify_otp(user.id, OtpType.LOGIN, _wrong(code))
    assert exc.value.details["attempts_remaining"] == 0

    # reaching the cap is not enough, the code is still live
    row = db.session.get(Otp, otp.id)
    assert row.attempts == 3
    assert row.status == OtpStatus.PENDING

    with pytest.raises(Mismatch) as exc:
        verify_otp(user.id, OtpType.LOGIN, _wrong(code))
    assert exc.value.details["attempts_remaining"] == 0
    row = db.session.get(Otp, otp.id)
    assert row.attempts == 4
    assert row.status == OtpStatus.EXPIRED

    # terminal: even the right code is refused now
    with pytest.raises(Expired):
        verify_otp(user.id, OtpType.LOGIN, code)
    assert db.session.get(Otp, otp.id).status == OtpStatus.EXPIRED


def test_correct_code_at_cap_still_verifies(user):
    otp = issue_otp(user.id, OtpType.LOGIN)
    for _ in range(3):
        with pytest.raises(Mismatch):
            verify_otp(user.id, OtpType.LOGIN, _wrong(otp.code))

    row = verify_otp(user.id, OtpType.LOGIN, otp.code)
    assert row.status == OtpStatus.VERIFIED
    assert row.attempts == 3


def test_terminal_states_never_change(user):
    verified = issue_otp(user.id, OtpType.RESET)
    verify_otp(user.id, OtpType.RESET, verified.code)

    later = datetime.utcnow() + timedelta(days=1)
    sweep_otps(now=later)
    with pytest.raises(AlreadyUsed):
        verify_otp(user.id, OtpType.RESET, verified.code, now=later)

    assert db.session.get(Otp, verified.id).status == OtpStatus.VERIFIED


def test_failed_verification_is_audited(user):
    otp = issue_otp(user.id, OtpType.LOGIN)
    with pytest.raises(Mismatch):
        verify_otp(user.id, OtpType.LOGIN, _wrong(otp.code))

    actions = [row.action for row in AuditLog.query.filter_by(user_id=user.id).all()]
    assert "OTP_ISSUED" in actions
    assert "OTP_MISMATCH" in actions


def test_sweep_expires_overdue_and_deletes_old(user):
    base = datetime(2026, 1, 1, 12, 0, 0)
    old = issue_otp(user.id, OtpType.LOGIN, now=base)
    fresh = issue_otp(user.id, OtpType.RESET, now=base + timedelta(days=8))
    old_id, fresh_id = old.id, fresh.id

    expired, deleted = sweep_otps(now=base + timedelta(days=1))
    assert (expired, deleted) == (1, 0)
    assert db.session.get(Otp, old_id).status == OtpStatus.EXPIRED

    expired, deleted = sweep_otps(now=base + timedelta(days=8))
    assert (expired, deleted) == (0, 1)
    assert db.session.get(Otp, old_id) is None
    assert db.session.get(Otp, fresh_id).status == OtpStatus.PENDING


def test_code_column_rejects_non_digits(user):
    with pytest.raises(ValueError):
        Otp(user_id=user.id, code="12a456", type=OtpType.LOGIN, expiry_time=datetime.utcnow())


def test_concurrent_verifies_succeed_exactly_once(app, user):
    otp = issue_otp(user.id, OtpType.LOGIN)
    code = otp.code
    user_id = user.id
    callers = 10
    verified = []
    already_used = []
    errors = []
    barrier = threading.Barrier(callers)

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                verify_otp(user_id, OtpType.LOGIN, code)
                verified.append(True)
            except AlreadyUsed:
                already_used.append(True)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(verified) == 1
    assert len(already_used) == callers - 1
    db.session.expire_all()
    assert db.session.get(Otp, otp.id).status == OtpStatus.VERIFIED


def test_concurrent_issues_leave_one_pending_code(app, user):
    user_id = user.id
    callers = 6
    errors = []
    barrier = threading.Barrier(callers)

    def worker():
        with app.app_context():
            barrier.wait()
            try:
                issue_otp(user_id, OtpType.LOGIN)
            except Exception as exc:  # collected for the assertion below
                errors.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker) for _ in range(callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert Otp.query.filter_by(user_id=user_id, type=OtpType.LOGIN).count() == callers
    assert Otp.query.filter_by(user_id=user_id, type=OtpType.LOGIN, status=OtpStatus.PENDING).count() == 1
