# backend/safeledger/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # SQLite DB stored in backend/instance/safeledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///safeledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("SAFELEDGER_LOG_LEVEL", "INFO")

    # Closeout photos live under this root; rows store paths relative to it
    PHOTO_STORAGE_ROOT = os.environ.get("SAFELEDGER_PHOTO_ROOT", "instance/closeout-photos")

    # Schema capability: drawer_counts.review_note (migration 0002_drawer_review_note)
    DRAWER_REVIEW_NOTES = _env_flag("SAFELEDGER_DRAWER_REVIEW_NOTES", True)

    # Used when a store row does not carry its own expected drawer amount
    DEFAULT_EXPECTED_DRAWER_CENTS = 20000
