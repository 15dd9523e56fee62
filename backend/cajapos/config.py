# backend/cajapos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance (one local store per device)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cajapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identifies this terminal; cash drawer sessions are scoped to it
    DEVICE_ID = os.environ.get("DEVICE_ID", "default")

    # Cash drawer audit
    CASH_VARIANCE_TOLERANCE = float(os.environ.get("CASH_VARIANCE_TOLERANCE", "0.5"))
    CASH_AUDIT_MIN_COMMENT_LENGTH = int(os.environ.get("CASH_AUDIT_MIN_COMMENT_LENGTH", "5"))

    # Kitchen display: new sales start as "pending" instead of "completed"
    KDS_ENABLED = _env_bool("KDS_ENABLED")

    # Retry policy for lock / stale-row failures
    RETRY_MAX_ATTEMPTS = int(os.environ.get("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY = float(os.environ.get("RETRY_BASE_DELAY", "0.1"))
    RETRY_JITTER = float(os.environ.get("RETRY_JITTER", "0.05"))
