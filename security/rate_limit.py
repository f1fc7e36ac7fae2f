from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from models import db
from models.rate_limit import ANONYMOUS, RateLimit
from security.errors import Denied
from utils.audit import log_event
from utils.store import lock_row, store_call


@dataclass(frozen=True)
class Decision:
    allowed: bool
    retry_after_seconds: int = 0

    @property
    def denied(self) -> bool:
        return not self.allowed


def _identity(user_id) -> str:
    return ANONYMOUS if user_id is None else str(user_id)


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(int((moment - now).total_seconds()), 1)


def _counter_id(identity: str, ip: str, endpoint: str, user_id, now: datetime) -> int:
    """
    Returns the id of the counter row for the key, creating it if needed.
    Two callers racing to create it are settled by the unique constraint.
    """
    query = select(RateLimit.id).where(
        RateLimit.identity == identity,
        RateLimit.ip_address == ip,
        RateLimit.endpoint == endpoint,
    )
    row_id = db.session.execute(query).scalar_one_or_none()
    if row_id is not None:
        return row_id

    row = RateLimit(
        identity=identity,
        user_id=user_id,
        ip_address=ip,
        endpoint=endpoint,
        request_count=0,
        window_start=now,
        created_at=now,
        updated_at=now,
    )
    db.session.add(row)
    try:
        db.session.flush()
    except IntegrityError:
        # nothing else is pending in this transaction yet
        db.session.rollback()
        return db.session.execute(query).scalar_one()
    return row.id


def admit(ip: str, endpoint: str, user_id: int = None, now: datetime = None) -> Decision:
    """
    Counts one request for (user or anonymous, ip, endpoint) and decides
    whether it may proceed. Fixed window; exceeding the threshold blocks the
    key for the cooldown period.
    """
    now = now or datetime.utcnow()
    ip = (ip or "unknown")[:45]
    endpoint = endpoint[:255]
    identity = _identity(user_id)

    window_seconds = current_app.config.get("RATE_LIMIT_WINDOW_SECONDS", 60)
    max_requests = current_app.config.get("RATE_LIMIT_MAX_REQUESTS", 10)
    cooldown_seconds = current_app.config.get("RATE_LIMIT_COOLDOWN_SECONDS", 300)

    with store_call("admit"):
        row_id = _counter_id(identity, ip, endpoint, user_id, now)
        row = lock_row(RateLimit, row_id, now)

        if row.blocked_until is not None:
            if row.blocked_until > now:
                db.session.commit()
                return Decision(False, _seconds_until(row.blocked_until, now))
            # block has lapsed: start over with a fresh window
            row.blocked_until = None
            row.window_start = now
            row.request_count = 0

        # Reset window if expired
        if now - row.window_start > timedelta(seconds=window_seconds):
            row.window_start = now
            row.request_count = 0

        row.request_count += 1

        if row.request_count > max_requests:
            row.blocked_until = now + timedelta(seconds=cooldown_seconds)
            log_event(
                "RATE_LIMIT_BLOCK",
                user_id=user_id,
                ip=ip,
                metadata={"endpoint": endpoint, "count": row.request_count, "cooldown": cooldown_seconds},
            )
            db.session.commit()
            return Decision(False, cooldown_seconds)

        db.session.commit()
        return Decision(True)


def require_admission(ip: str, endpoint: str, user_id: int = None, now: datetime = None) -> Decision:
    decision = admit(ip, endpoint, user_id=user_id, now=now)
    if decision.denied:
        raise Denied(retry_after_seconds=decision.retry_after_seconds)
    return decision
