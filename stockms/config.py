# stockms/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the instance folder unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockms.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Procurement defaults
    DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "SAR")
    DEFAULT_VAT_PERCENT = float(os.environ.get("DEFAULT_VAT_PERCENT", "15"))

    # 0 means "any variance raises an NCR"
    NCR_VARIANCE_THRESHOLD_PERCENT = float(os.environ.get("NCR_VARIANCE_THRESHOLD_PERCENT", "0"))
    NCR_VARIANCE_THRESHOLD_AMOUNT = float(os.environ.get("NCR_VARIANCE_THRESHOLD_AMOUNT", "0"))

    SESSION_ABSOLUTE_TIMEOUT_HOURS = int(os.environ.get("SESSION_ABSOLUTE_TIMEOUT_HOURS", "24"))
    SESSION_IDLE_TIMEOUT_HOURS = int(os.environ.get("SESSION_IDLE_TIMEOUT_HOURS", "2"))

    # bcrypt cost factor; tests lower it
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "")
