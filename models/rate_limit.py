from datetime import datetime

from models.db import db

ANONYMOUS = "anonymous"


class RateLimit(db.Model):
    __tablename__ = "rate_limit"

    id = db.Column(db.Integer, primary_key=True)

    # user id as text, or "anonymous" for pre-auth requests
    identity = db.Column(db.String(64), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=True)
    ip_address = db.Column(db.String(45), nullable=False)
    endpoint = db.Column(db.String(255), nullable=False)

    request_count = db.Column(db.Integer, default=0, nullable=False)
    window_start = db.Column(db.DateTime, nullable=False)
    blocked_until = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("identity", "ip_address", "endpoint", name="uq_rate_limit_key"),
    )
