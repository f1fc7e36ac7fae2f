import hashlib
import secrets
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import delete, or_, select, update

from models import db
from models.auth_token import AuthToken
from models.user import User
from security.errors import Expired, Invalid, UserNotFound
from utils.audit import log_event
from utils.store import store_call


def _hash_token(token: str) -> str:
    # SHA-256 is fine for hashing random opaque tokens
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(user_id: int, device_info: str = None, ip: str = None, now: datetime = None) -> str:
    """
    Creates a token for the user and returns the RAW token.
    Only the hash is stored in DB.
    """
    raw_token = secrets.token_urlsafe(32)
    now = now or datetime.utcnow()
    lifetime = current_app.config.get("TOKEN_TTL_SECONDS", 28800)

    with store_call("issue_token"):
        if db.session.get(User, user_id) is None:
            raise UserNotFound()

        row = AuthToken(
            user_id=user_id,
            token_hash=_hash_token(raw_token),
            device_info=(device_info or "")[:255] or None,
            ip_address=(ip or "")[:45] or None,
            is_valid=True,
            expiry_time=now + timedelta(seconds=lifetime),
            created_at=now,
            updated_at=now,
        )
        db.session.add(row)
        log_event("TOKEN_ISSUED", user_id=user_id, ip=ip, metadata={"device": row.device_info})
        db.session.commit()
    return raw_token


def validate_token(raw_token: str, now: datetime = None) -> User:
    if not raw_token:
        raise Invalid()
    now = now or datetime.utcnow()

    with store_call("validate_token"):
        row = db.session.execute(
            select(AuthToken).where(AuthToken.token_hash == _hash_token(raw_token))
        ).scalar_one_or_none()
        if row is None or not row.is_valid:
            raise Invalid()

        # Absolute expiry
        if row.expiry_time <= now:
            raise Expired("Token expired")

        user = db.session.get(User, row.user_id)
        if user is None:
            raise Invalid()
        return user


def revoke_token(raw_token: str) -> None:
    """Marks the token invalid. Unknown or already revoked tokens are ignored."""
    if not raw_token:
        return
    now = datetime.utcnow()
    with store_call("revoke_token"):
        row = db.session.execute(
            select(AuthToken).where(AuthToken.token_hash == _hash_token(raw_token))
        ).scalar_one_or_none()
        if row is None or not row.is_valid:
            return
        db.session.execute(
            update(AuthToken)
            .where(AuthToken.id == row.id)
            .values(is_valid=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        log_event("TOKEN_REVOKED", user_id=row.user_id)
        db.session.commit()


def revoke_all_tokens(user_id: int) -> int:
    now = datetime.utcnow()
    with store_call("revoke_all_tokens"):
        count = db.session.execute(
            update(AuthToken)
            .where(AuthToken.user_id == user_id, AuthToken.is_valid.is_(True))
            .values(is_valid=False, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if count:
            log_event("TOKENS_REVOKED_ALL", user_id=user_id, metadata={"revoked": count})
        db.session.commit()
    return count


def sweep_expired_tokens(now: datetime = None) -> int:
    """
    Deletes expired and revoked tokens in one statement. A validate racing
    with the sweep rejects the token either way.
    """
    now = now or datetime.utcnow()
    with store_call("sweep_expired_tokens"):
        deleted = db.session.execute(
            delete(AuthToken)
            .where(or_(AuthToken.expiry_time < now, AuthToken.is_valid.is_(False)))
            .execution_options(synchronize_session=False)
        ).rowcount
        db.session.commit()

    current_app.logger.info("token sweep: deleted=%s", deleted)
    return deleted
