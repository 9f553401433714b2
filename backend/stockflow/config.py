# backend/stockflow/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockflow.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockflow.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Thresholds applied to snapshots created lazily by the first inbound movement
    STOCK_DEFAULT_MIN_LEVEL = int(os.environ.get("STOCK_DEFAULT_MIN_LEVEL", "10"))
    STOCK_DEFAULT_MAX_LEVEL = int(os.environ.get("STOCK_DEFAULT_MAX_LEVEL", "100"))

    # Retry policy for write conflicts (deadlocks, stale versions, lost status races)
    STOCK_RETRY_ATTEMPTS = int(os.environ.get("STOCK_RETRY_ATTEMPTS", "3"))
    STOCK_RETRY_BACKOFF = float(os.environ.get("STOCK_RETRY_BACKOFF", "0.1"))


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    LOG_LEVEL = "DEBUG"
    STOCK_RETRY_BACKOFF = 0.0
