import re

EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_valid_email(email: str) -> bool:
    return isinstance(email, str) and len(email) <= 255 and EMAIL_RE.match(email) is not None


def is_valid_phone(phone: str) -> bool:
    return isinstance(phone, str) and PHONE_RE.match(phone) is not None
