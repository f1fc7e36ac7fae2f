import hmac
import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete, select, update

from models import db
from models.otp import CODE_RE, Otp, OtpStatus, OtpType
from models.user import User
from security.errors import AlreadyUsed, Expired, Mismatch, NotFound, UserNotFound
from utils.audit import log_event
from utils.store import lock_row, store_call

OTP_LENGTH = 6


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def _otp_type(value) -> OtpType:
    return value if isinstance(value, OtpType) else OtpType(str(value).upper())


def issue_otp(user_id: int, otp_type, now: datetime = None) -> Otp:
    """
    Creates a PENDING code for the user. Older PENDING codes of the same type
    are expired so only one code per user and type is live.
    """
    otp_type = _otp_type(otp_type)
    now = now or datetime.utcnow()
    ttl = current_app.config.get("OTP_TTL_SECONDS", 300)

    with store_call("issue_otp"):
        # serializes issuance per user
        if lock_row(User, user_id, now) is None:
            raise UserNotFound()

        superseded = db.session.execute(
            update(Otp)
            .where(Otp.user_id == user_id, Otp.type == otp_type, Otp.status == OtpStatus.PENDING)
            .values(status=OtpStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount

        otp = Otp(
            user_id=user_id,
            code=generate_code(),
            type=otp_type,
            status=OtpStatus.PENDING,
            attempts=0,
            expiry_time=now + timedelta(seconds=ttl),
            created_at=now,
            updated_at=now,
        )
        db.session.add(otp)
        log_event("OTP_ISSUED", user_id=user_id, metadata={"type": otp_type.value, "superseded": superseded})
        db.session.commit()
        return otp


def _latest_otp_id(user_id: int, otp_type: OtpType):
    return db.session.execute(
        select(Otp.id)
        .where(Otp.user_id == user_id, Otp.type == otp_type)
        .order_by(Otp.created_at.desc(), Otp.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def verify_otp(user_id: int, otp_type, submitted_code: str, now: datetime = None) -> Otp:
    """
    Checks a submitted code against the user's newest code of this type.

    Raises NotFound, AlreadyUsed, Expired or Mismatch. Expiry is decided
    before the code is compared, so a correct but late code is Expired.
    Each state change is committed before the error is raised.
    """
    otp_type = _otp_type(otp_type)
    now = now or datetime.utcnow()
    max_attempts = current_app.config.get("OTP_MAX_ATTEMPTS", 5)

    with store_call("verify_otp"):
        otp_id = _latest_otp_id(user_id, otp_type)
        otp = lock_row(Otp, otp_id, now) if otp_id is not None else None
        if otp is None:
            raise NotFound("No OTP issued")

        if otp.status == OtpStatus.VERIFIED:
            raise AlreadyUsed()
        if otp.status == OtpStatus.EXPIRED:
            raise Expired("OTP expired")

        if now >= otp.expiry_time:
            otp.status = OtpStatus.EXPIRED
            log_event("OTP_EXPIRED", user_id=user_id, metadata={"type": otp_type.value, "reason": "ttl"})
            db.session.commit()
            raise Expired("OTP expired")

        code = submitted_code if isinstance(submitted_code, str) else ""
        if not CODE_RE.match(code) or not hmac.compare_digest(code, otp.code):
            otp.attempts += 1
            exhausted = otp.attempts > max_attempts
            remaining = max(max_attempts - otp.attempts, 0)
            if exhausted:
                otp.status = OtpStatus.EXPIRED
            log_event(
                "OTP_MISMATCH",
                user_id=user_id,
                metadata={"type": otp_type.value, "attempts": otp.attempts, "expired": exhausted},
            )
            db.session.commit()
            raise Mismatch(attempts_remaining=remaining)

        otp.status = OtpStatus.VERIFIED
        log_event("OTP_VERIFIED", user_id=user_id, metadata={"type": otp_type.value})
        db.session.commit()
        return otp


def sweep_otps(now: datetime = None) -> tuple[int, int]:
    """
    Expires overdue PENDING codes, then deletes EXPIRED codes older than the
    retention period. Returns (expired, deleted).
    """
    now = now or datetime.utcnow()
    retention_days = current_app.config.get("OTP_RETENTION_DAYS", 7)

    with store_call("sweep_otps"):
        expired = db.session.execute(
            update(Otp)
            .where(Otp.status == OtpStatus.PENDING, Otp.expiry_time < now)
            .values(status=OtpStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()

        deleted = db.session.execute(
            delete(Otp)
            .where(Otp.status == OtpStatus.EXPIRED, Otp.created_at < now - timedelta(days=retention_days))
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()

    current_app.logger.info("otp sweep: expired=%s deleted=%s", expired, deleted)
    return expired, deleted
