# backend/superpos/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/superpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///superpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Register default; the cashier can still change it per sale
    DEFAULT_TAX_RATE_PERCENT = os.environ.get("DEFAULT_TAX_RATE_PERCENT", "5")

    # Voiding a paid invoice puts the sold units back on the shelf
    VOID_RESTOCKS_INVENTORY = _env_bool("VOID_RESTOCKS_INVENTORY", True)

    HISTORY_DEFAULT_LIMIT = int(os.environ.get("HISTORY_DEFAULT_LIMIT", "200"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    DEFAULT_TAX_RATE_PERCENT = "0"
    VOID_RESTOCKS_INVENTORY = True
    LOG_LEVEL = "DEBUG"
