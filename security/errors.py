class AuthError(Exception):
    """
    Base for every outcome the engine reports to its caller.

    `code` is stable and safe to expose; `retryable` tells the caller whether
    repeating the same call without new input can succeed.
    """

    code = "AUTH_ERROR"
    retryable = False
    default_message = "Authentication error"

    def __init__(self, message: str = None, **details):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details

    def to_dict(self) -> dict:
        data = {"error": self.code, "message": self.message}
        data.update(self.details)
        return data


class NotFound(AuthError):
    code = "NOT_FOUND"
    default_message = "Not found"


class UserNotFound(NotFound):
    code = "USER_NOT_FOUND"
    default_message = "User not found"


class Expired(AuthError):
    code = "EXPIRED"
    default_message = "Expired"


class Mismatch(AuthError):
    code = "MISMATCH"
    default_message = "Code does not match"


class AlreadyUsed(AuthError):
    code = "ALREADY_USED"
    default_message = "Code already used"


class Locked(AuthError):
    code = "LOCKED"
    default_message = "Account locked"


class BadCredential(AuthError):
    code = "BAD_CREDENTIAL"
    default_message = "Invalid credentials"


class Denied(AuthError):
    code = "RATE_LIMITED"
    default_message = "Too many requests"


class Invalid(AuthError):
    code = "INVALID_TOKEN"
    default_message = "Invalid token"


class Conflict(AuthError):
    code = "CONFLICT"
    default_message = "Already exists"


class ValidationError(AuthError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class Unavailable(AuthError):
    code = "UNAVAILABLE"
    retryable = True
    default_message = "Store unavailable"
