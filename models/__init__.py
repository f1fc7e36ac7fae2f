from .db import db
from .user import User, UserStatus
from .otp import Otp, OtpStatus, OtpType
from .rate_limit import RateLimit
from .auth_token import AuthToken
from .audit_log import AuditLog
