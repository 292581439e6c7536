import os
from datetime import timedelta


def _int_env(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    MAX_CONTENT_LENGTH = 5 * 1024 * 1024
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "dev-secret-change-me-please-32-bytes")
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=1)
    REFRESH_TOKEN_TTL_DAYS = 7

    # currency code stamped on new orders; falls back to the one active Currency row
    ACTIVE_CURRENCY_CODE = os.getenv("ACTIVE_CURRENCY_CODE")

    # replays of the same Idempotency-Key inside this window return the original order
    ORDER_IDEMPOTENCY_WINDOW = timedelta(minutes=_int_env("ORDER_IDEMPOTENCY_WINDOW_MINUTES", 10))

    # first attempt plus one retry
    COUPON_REDEEM_ATTEMPTS = _int_env("COUPON_REDEEM_ATTEMPTS", 2)

    @staticmethod
    def init_app(app):
        if not os.getenv("DATABASE_URL"):
            os.makedirs(app.instance_path, exist_ok=True)
            app.config["SQLALCHEMY_DATABASE_URI"] = f"sqlite:///{os.path.join(app.instance_path, 'atelier.db')}"
        else:
            app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv("DATABASE_URL")
