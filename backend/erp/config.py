# backend/erp/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Postgres in production; a local SQLite file keeps `flask run` usable without one
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///erp.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Connection pool (ignored for SQLite URIs, see create_app)
    DB_POOL_MIN = _env_int("DB_POOL_MIN", 2)
    DB_POOL_MAX = _env_int("DB_POOL_MAX", 10)
    DB_POOL_TIMEOUT = _env_int("DB_POOL_TIMEOUT", 60)

    # Flask-Mail relay for pending-approval notices; mail is skipped while MAIL_SERVER is unset
    MAIL_SERVER = os.environ.get("MAIL_SERVER")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.environ.get("MAIL_DEFAULT_SENDER", "erp@localhost")
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", True)
    MAIL_USE_SSL = _env_bool("MAIL_USE_SSL", False)
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")

    # Defaults for `flask users seed-admin`
    SEED_ADMIN_USERNAME = os.environ.get("SEED_ADMIN_USERNAME")
    SEED_ADMIN_PASSWORD = os.environ.get("SEED_ADMIN_PASSWORD")
    SEED_ADMIN_EMAIL = os.environ.get("SEED_ADMIN_EMAIL")
    SEED_ADMIN_BRANCH_CODES = os.environ.get(
        "SEED_ADMIN_BRANCH_CODES", os.environ.get("SEED_ADMIN_BRANCH_CODE", "")
    )
    SEED_ADMIN_ROLE = os.environ.get("SEED_ADMIN_ROLE", "Admin")

    # Approval decision stream
    APPROVAL_EVENTS_KEEPALIVE = _env_int("APPROVAL_EVENTS_KEEPALIVE", 25)
    APPROVAL_EVENTS_QUEUE_LIMIT = _env_int("APPROVAL_EVENTS_QUEUE_LIMIT", 10)

    # Session lifetime
    SESSION_HOURS = _env_int("SESSION_HOURS", 24)
    SESSION_IDLE_MINUTES = _env_int("SESSION_IDLE_MINUTES", 120)
