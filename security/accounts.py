from datetime import datetime

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from models import db
from models.user import User, UserStatus
from security.errors import BadCredential, Conflict, Locked, NotFound, UserNotFound, ValidationError
from security.password import hash_password, verify_password
from utils.audit import log_event
from utils.store import lock_row, store_call
from utils.validation import is_valid_email, is_valid_phone, normalize_email


def create_user(email: str, password: str, phone_number: str = None) -> User:
    email = normalize_email(email)
    if not is_valid_email(email):
        raise ValidationError("Invalid email")
    if phone_number is not None:
        phone_number = phone_number.strip()
        if not is_valid_phone(phone_number):
            raise ValidationError("Invalid phone_number")

    min_len = current_app.config.get("PASSWORD_MIN_LEN", 12)
    if not isinstance(password, str) or len(password) < min_len:
        raise ValidationError(f"Password must be at least {min_len} characters")
    # bcrypt only looks at the first 72 bytes
    if len(password.encode("utf-8")) > 72:
        raise ValidationError("Password must be at most 72 bytes")

    with store_call("create_user"):
        if db.session.execute(select(User.id).where(User.email == email)).first():
            raise Conflict("Email already registered")

        user = User(email=email, phone_number=phone_number, password_hash=hash_password(password))
        db.session.add(user)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise Conflict("Email already registered") from exc

        log_event("REGISTER_SUCCESS", user_id=user.id)
        db.session.commit()
        return user


def record_failed_attempt(user_id: int) -> User:
    """
    Increments the failure counter under the row lock and locks the account
    once it reaches MAX_LOGIN_ATTEMPTS.
    """
    max_attempts = current_app.config.get("MAX_LOGIN_ATTEMPTS", 5)

    with store_call("record_failed_attempt"):
        user = lock_row(User, user_id)
        if user is None:
            raise UserNotFound()

        user.failed_attempt += 1
        locked_now = False
        if user.failed_attempt >= max_attempts and user.status == UserStatus.ACTIVE:
            user.status = UserStatus.LOCKED
            locked_now = True

        log_event(
            "LOGIN_FAIL",
            user_id=user.id,
            metadata={"fail_count": user.failed_attempt, "locked_now": locked_now},
        )
        db.session.commit()
        return user


def record_successful_login(user_id: int, now: datetime = None) -> User:
    """
    Clears failure counter after successful login. Does nothing for a user
    that is not ACTIVE; locked users must be rejected before this is called.
    """
    now = now or datetime.utcnow()
    with store_call("record_successful_login"):
        user = lock_row(User, user_id, now)
        if user is None:
            raise UserNotFound()

        if user.status != UserStatus.ACTIVE:
            # release the lock without the updated_at stamp
            db.session.rollback()
            return user

        user.failed_attempt = 0
        user.last_login_at = now
        log_event("LOGIN_SUCCESS", user_id=user.id)
        db.session.commit()
        return user


def authenticate(email: str, password: str) -> User:
    email = normalize_email(email)

    with store_call("authenticate"):
        user = db.session.execute(select(User).where(User.email == email)).scalar_one_or_none()
        if user is None:
            raise NotFound("User not found")

        if user.status != UserStatus.ACTIVE:
            raise Locked(status=user.status.value)

        user_id = user.id
        password_ok = verify_password(password, user.password_hash)

    if not password_ok:
        user = record_failed_attempt(user_id)
        raise BadCredential(locked_now=user.status == UserStatus.LOCKED)
    return user


def unlock_user(user_id: int) -> User:
    with store_call("unlock_user"):
        user = lock_row(User, user_id)
        if user is None:
            raise UserNotFound()

        user.status = UserStatus.ACTIVE
        user.failed_attempt = 0
        log_event("ACCOUNT_UNLOCKED", user_id=user.id)
        db.session.commit()
        return user
