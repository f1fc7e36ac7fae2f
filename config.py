import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _int_env(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _engine_options(url: str, timeout_seconds: int) -> dict:
    options = {"pool_pre_ping": True}
    if url.startswith("postgresql"):
        # bound every statement so a stuck store call fails instead of hanging
        options["pool_timeout"] = timeout_seconds
        options["connect_args"] = {
            "connect_timeout": timeout_seconds,
            "options": f"-c statement_timeout={timeout_seconds * 1000}",
        }
    elif url.startswith("sqlite"):
        options["connect_args"] = {"timeout": timeout_seconds}
    return options


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to this file as authstate.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "authstate.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Store calls fail with Unavailable after this long
    STORE_TIMEOUT_SECONDS = _int_env("STORE_TIMEOUT_SECONDS", 5)
    SQLALCHEMY_ENGINE_OPTIONS = _engine_options(SQLALCHEMY_DATABASE_URI, STORE_TIMEOUT_SECONDS)

    # Brute-force protection: failed logins before the account is LOCKED
    MAX_LOGIN_ATTEMPTS = _int_env("MAX_LOGIN_ATTEMPTS", 5)

    # Passwords
    PASSWORD_MIN_LEN = _int_env("PASSWORD_MIN_LEN", 12)
    BCRYPT_ROUNDS = _int_env("BCRYPT_ROUNDS", 12)

    # OTP
    OTP_TTL_SECONDS = _int_env("OTP_TTL_SECONDS", 300)  # 5 minutes
    OTP_MAX_ATTEMPTS = _int_env("OTP_MAX_ATTEMPTS", 5)
    OTP_RETENTION_DAYS = _int_env("OTP_RETENTION_DAYS", 7)

    # Rate limit per (identity, ip, endpoint)
    RATE_LIMIT_WINDOW_SECONDS = _int_env("RATE_LIMIT_WINDOW_SECONDS", 60)
    RATE_LIMIT_MAX_REQUESTS = _int_env("RATE_LIMIT_MAX_REQUESTS", 15)
    RATE_LIMIT_COOLDOWN_SECONDS = _int_env("RATE_LIMIT_COOLDOWN_SECONDS", 300)

    # Auth tokens: 8 hours lifetime
    TOKEN_TTL_SECONDS = _int_env("TOKEN_TTL_SECONDS", 8 * 60 * 60)
    TOKEN_ROTATE_ON_LOGIN = os.getenv("TOKEN_ROTATE_ON_LOGIN", "false").lower() == "true"

    # Cleanup cadence
    SWEEP_INTERVAL_SECONDS = _int_env("SWEEP_INTERVAL_SECONDS", 3600)

    # Basic app settings
    DEBUG = False
    TESTING = False


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    BCRYPT_ROUNDS = 4
    PASSWORD_MIN_LEN = 8
    MAX_LOGIN_ATTEMPTS = 5
    OTP_TTL_SECONDS = 300
    OTP_MAX_ATTEMPTS = 3
    RATE_LIMIT_WINDOW_SECONDS = 60
    RATE_LIMIT_MAX_REQUESTS = 10
    RATE_LIMIT_COOLDOWN_SECONDS = 120
    TOKEN_TTL_SECONDS = 3600
