# backend/counterpos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/counterpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///counterpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite writer waits on a competing write lock before
    # raising "database is locked" (which the retry loop then handles)
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "15"))

    # Points earned per currency unit of sale profit (floored)
    LOYALTY_POINTS_RATE = os.environ.get("LOYALTY_POINTS_RATE", "0.05")

    # Whole-transaction retries on lock/deadlock/stale-version errors
    SALE_RETRY_ATTEMPTS = int(os.environ.get("SALE_RETRY_ATTEMPTS", "5"))
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.05"))

    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS", "24"))
    STOCK_LOG_PREVIEW_LIMIT = int(os.environ.get("STOCK_LOG_PREVIEW_LIMIT", "10"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
