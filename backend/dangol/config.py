# backend/dangol/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite by default; set DATABASE_URL to a postgresql:// URL in production
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///dangol.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Wall-clock frame for deal deadlines and the notification window
    DEAL_TIMEZONE = os.environ.get("DEAL_TIMEZONE", "Asia/Seoul")

    DEFAULT_SEARCH_RADIUS_M = int(os.environ.get("DEFAULT_SEARCH_RADIUS_M", "200"))
    DEFAULT_MAX_CLAIMS = 999

    # Deals below this id store deadlines as naive UTC (pre-KST representation)
    LEGACY_EXPIRY_CUTOFF_DEAL_ID = int(os.environ.get("LEGACY_EXPIRY_CUTOFF_DEAL_ID", "21"))

    # Auto-notification on deal creation fires only for local hour in [start, end)
    NOTIFY_BUSINESS_HOURS = (
        int(os.environ.get("NOTIFY_START_HOUR", "9")),
        int(os.environ.get("NOTIFY_END_HOUR", "20")),
    )
    AUTO_NOTIFY_NEW_DEALS = _env_flag("AUTO_NOTIFY_NEW_DEALS", True)

    # "log" is the development transport; real senders are registered by the host
    PUSH_SENDER = os.environ.get("PUSH_SENDER", "log")

    CORS_ALLOWED_ORIGINS = tuple(
        o.strip()
        for o in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
        if o.strip()
    )

    CELERY = {
        "broker_url": os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0"),
        "task_ignore_result": True,
        "task_always_eager": _env_flag("CELERY_ALWAYS_EAGER", False),
        "timezone": "UTC",
    }
