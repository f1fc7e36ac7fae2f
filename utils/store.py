from contextlib import contextmanager
from datetime import datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from models import db
from security.errors import AuthError, Unavailable

_UNAVAILABLE = (OperationalError, InterfaceError, PoolTimeoutError)


@contextmanager
def store_call(operation: str):
    """
    Wraps one engine operation against the store.

    Anything not committed when the block exits with an error is rolled back.
    Connectivity and timeout failures surface as Unavailable; business errors
    and other store errors propagate unchanged.
    """
    try:
        yield db.session
    except AuthError:
        db.session.rollback()
        raise
    except _UNAVAILABLE as exc:
        db.session.rollback()
        current_app.logger.warning("store unavailable during %s: %s", operation, exc.__class__.__name__)
        raise Unavailable(f"Store unavailable during {operation}") from exc
    except SQLAlchemyError:
        db.session.rollback()
        raise


def lock_row(model, row_id, now: datetime = None):
    """
    Takes the row's write lock and returns a fresh copy of it.

    The UPDATE both stamps updated_at and blocks concurrent writers of the
    same row until this transaction ends (row lock on PostgreSQL, database
    write lock on SQLite). Returns None if the row is gone.
    """
    now = now or datetime.utcnow()
    result = db.session.execute(
        update(model).where(model.id == row_id).values(updated_at=now)
    )
    if result.rowcount == 0:
        return None
    return db.session.execute(
        select(model).where(model.id == row_id).execution_options(populate_existing=True)
    ).scalar_one()
