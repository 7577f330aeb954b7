# backend/poscore/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/poscore.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///poscore.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Offline terminals replay at most this many queued sales per request
    OFFLINE_SYNC_MAX_BATCH = _env_int("OFFLINE_SYNC_MAX_BATCH", 50)
    OFFLINE_SYNC_WORKERS = _env_int("OFFLINE_SYNC_WORKERS", 5)

    # Storage lock conflicts (database is locked, stale version) are retried
    TX_RETRY_ATTEMPTS = _env_int("TX_RETRY_ATTEMPTS", 3)
    TX_RETRY_BACKOFF_SECONDS = float(os.environ.get("TX_RETRY_BACKOFF_SECONDS", "0.1"))

    # Used when a business has no threshold of its own
    DEFAULT_CASH_VARIANCE_THRESHOLD_PENCE = _env_int("DEFAULT_CASH_VARIANCE_THRESHOLD_PENCE", 2000)
    CASH_VARIANCE_LOOKBACK_DAYS = _env_int("CASH_VARIANCE_LOOKBACK_DAYS", 14)
    CASH_VARIANCE_REPEAT_COUNT = _env_int("CASH_VARIANCE_REPEAT_COUNT", 2)

    # bcrypt cost for passwords and approval PINs
    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)
