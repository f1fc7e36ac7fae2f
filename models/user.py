import enum
import uuid
from datetime import datetime

from sqlalchemy.orm import validates

from models.db import db
from utils.validation import is_valid_email, is_valid_phone, normalize_email


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    LOCKED = "LOCKED"
    DISABLED = "DISABLED"


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    uuid = db.Column(db.String(36), unique=True, nullable=False, default=lambda: str(uuid.uuid4()))

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    phone_number = db.Column(db.String(20), nullable=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    status = db.Column(
        db.Enum(UserStatus, name="user_status", native_enum=False, length=16),
        default=UserStatus.ACTIVE,
        nullable=False,
    )
    failed_attempt = db.Column(db.Integer, default=0, nullable=False)
    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    otps = db.relationship("Otp", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)
    tokens = db.relationship("AuthToken", back_populates="user", cascade="all, delete-orphan", passive_deletes=True)

    @validates("email")
    def _validate_email(self, key, value):
        value = normalize_email(value)
        if not is_valid_email(value):
            raise ValueError("Invalid email")
        return value

    @validates("phone_number")
    def _validate_phone(self, key, value):
        if value is None:
            return None
        value = value.strip()
        if not is_valid_phone(value):
            raise ValueError("Invalid phone_number")
        return value

    def __repr__(self):
        return f"<User {self.id} {self.status.value}>"
