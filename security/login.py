from flask import current_app

from models import db
from models.otp import Otp, OtpType
from models.user import User, UserStatus
from security.accounts import authenticate, record_successful_login
from security.errors import Locked, UserNotFound
from security.otp import issue_otp, verify_otp
from security.rate_limit import require_admission
from security.tokens import issue_token, revoke_all_tokens
from utils.store import store_call


def begin_login(email: str, password: str, ip: str, endpoint: str = "login") -> Otp:
    """
    First step: admission for the anonymous caller, password check, then a
    LOGIN code for the user. Delivering the code is up to the caller.
    """
    require_admission(ip, endpoint)
    user = authenticate(email, password)
    return issue_otp(user.id, OtpType.LOGIN)


def complete_login(
    user_id: int,
    code: str,
    ip: str,
    device_info: str = None,
    endpoint: str = "login/verify",
) -> str:
    """Second step: verify the LOGIN code and hand out a token."""
    require_admission(ip, endpoint, user_id=user_id)
    verify_otp(user_id, OtpType.LOGIN, code)

    with store_call("complete_login"):
        user = db.session.get(User, user_id)
        if user is None:
            raise UserNotFound()
        if user.status != UserStatus.ACTIVE:
            raise Locked(status=user.status.value)

    record_successful_login(user_id)

    # Rotate: revoke any existing tokens for this user
    if current_app.config.get("TOKEN_ROTATE_ON_LOGIN", False):
        revoke_all_tokens(user_id)

    return issue_token(user_id, device_info=device_info, ip=ip)
