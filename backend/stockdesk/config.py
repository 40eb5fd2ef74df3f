# backend/stockdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/inventory.db
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///inventory.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Staging area for snapshots and uploaded restores (defaults to <instance>/backups)
    BACKUP_DIR = os.environ.get("BACKUP_DIR")
    BACKUP_FILENAME_PREFIX = os.environ.get("BACKUP_FILENAME_PREFIX", "inventory-backup")
    SQLITE_TIMEOUT_SECONDS = float(os.environ.get("SQLITE_TIMEOUT_SECONDS", "30"))

    # Orders may drive stock below zero unless this is switched off
    ALLOW_NEGATIVE_STOCK = _env_bool("ALLOW_NEGATIVE_STOCK", True)

    COMPANY_NAME = os.environ.get("COMPANY_NAME", "Shah Traders")

    MAX_CONTENT_LENGTH = 200 * 1024 * 1024
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    }
