# backend/inventory_flow/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the working directory unless DATABASE_URL points at Postgres
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///inventory_flow.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Draft orders older than this are deleted by `flask drafts reap`
    DRAFT_MAX_AGE_HOURS = _env_int("DRAFT_MAX_AGE_HOURS", 24)

    # Row-lock waits are bounded; contention surfaces as a retryable error
    LOCK_TIMEOUT_SECONDS = _env_float("LOCK_TIMEOUT_SECONDS", 5.0)
    LOCK_RETRY_ATTEMPTS = _env_int("LOCK_RETRY_ATTEMPTS", 3)
    LOCK_RETRY_BACKOFF_SECONDS = _env_float("LOCK_RETRY_BACKOFF_SECONDS", 0.1)

    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # Unset: <instance_path>/invoices
    INVOICE_STORAGE_DIR = os.environ.get("INVOICE_STORAGE_DIR")
    INVOICE_COMPANY_NAME = os.environ.get("INVOICE_COMPANY_NAME", "INVENTORY FLOW")

    # PostgreSQL roles taken with SET LOCAL ROLE at the start of each write
    # transaction. Unset: every transaction runs as the login role.
    DATABASE_APP_ROLE = os.environ.get("DATABASE_APP_ROLE") or None
    DATABASE_SERVICE_ROLE = os.environ.get("DATABASE_SERVICE_ROLE") or None

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
