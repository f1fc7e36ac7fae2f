import enum
import re
import uuid
from datetime import datetime

from sqlalchemy.orm import validates

from models.db import db

CODE_RE = re.compile(r"^[0-9]{6}$", re.ASCII)


class OtpType(str, enum.Enum):
    LOGIN = "LOGIN"
    RESET = "RESET"
    VERIFY_EMAIL = "VERIFY_EMAIL"
    VERIFY_PHONE = "VERIFY_PHONE"


class OtpStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"


class Otp(db.Model):
    __tablename__ = "otp"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    code = db.Column(db.String(6), nullable=False)
    type = db.Column(db.Enum(OtpType, name="otp_type", native_enum=False, length=16), nullable=False)
    status = db.Column(
        db.Enum(OtpStatus, name="otp_status", native_enum=False, length=16),
        default=OtpStatus.PENDING,
        nullable=False,
        index=True,
    )

    attempts = db.Column(db.Integer, default=0, nullable=False)
    expiry_time = db.Column(db.DateTime, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    user = db.relationship("User", back_populates="otps")

    __table_args__ = (
        db.Index("ix_otp_user_type_created", "user_id", "type", "created_at"),
    )

    @validates("code")
    def _validate_code(self, key, value):
        if not isinstance(value, str) or not CODE_RE.match(value):
            raise ValueError("OTP code must be exactly 6 digits")
        return value

    def __repr__(self):
        return f"<Otp {self.id} {self.type.value} {self.status.value}>"
