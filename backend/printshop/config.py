# backend/printshop/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/printshop.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///printshop.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    API_VERSION = "0.1.0"

    # Browser origins allowed to call the API (comma separated)
    CORS_ALLOWED_ORIGINS = tuple(
        o.strip() for o in os.environ.get(
            "CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
        ).split(",") if o.strip()
    )

    # Quotes
    QUOTE_EXPIRY_DAYS = _int_env("QUOTE_EXPIRY_DAYS", 30)

    # Orders (rates in basis points, 10000 = 100%)
    DEFAULT_DEPOSIT_BPS = _int_env("DEFAULT_DEPOSIT_BPS", 5000)
    DEFAULT_REVISIONS_ALLOWED = _int_env("DEFAULT_REVISIONS_ALLOWED", 2)
    # Tiers store 0 or this value to mean "unlimited revisions"
    UNLIMITED_REVISIONS_SENTINEL = _int_env("UNLIMITED_REVISIONS_SENTINEL", 999)
    DEFAULT_PRODUCTION_DAYS = _int_env("DEFAULT_PRODUCTION_DAYS", 7)

    # Scheduling
    BOOKING_CANCELLATION_LEAD_HOURS = _int_env("BOOKING_CANCELLATION_LEAD_HOURS", 24)
    DEFAULT_SLOTS_PER_DAY = _int_env("DEFAULT_SLOTS_PER_DAY", 5)
    DEFAULT_EMERGENCY_SLOTS = _int_env("DEFAULT_EMERGENCY_SLOTS", 2)
    DEFAULT_EMERGENCY_FEE_BPS = _int_env("DEFAULT_EMERGENCY_FEE_BPS", 2000)

    # SLA timers
    FIRST_PROOF_SLA_HOURS = _int_env("FIRST_PROOF_SLA_HOURS", 48)
    REVISION_TURNAROUND_SLA_HOURS = _int_env("REVISION_TURNAROUND_SLA_HOURS", 24)

    # Retry policy for lock / optimistic-version conflicts
    RETRY_ATTEMPTS = _int_env("RETRY_ATTEMPTS", 3)
    RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.1"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    RETRY_BACKOFF_SECONDS = 0.0
