"""
Application configuration.

This module defines the configuration settings for the QuoteDesk Flask application: database connection,
secret key, email delivery and quote polling. It uses environment variables for sensitive information and
defaults for development. In production, make sure to set the appropriate environment variables and
secure the secret key.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    """Base configuration shared by all environments."""

    # IMPORTANT: change this in production
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me-please")

    # Database: SQLite for development (simple file in project folder)
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        f"sqlite:///{BASE_DIR / 'quotedesk.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CSRF protection for mutating requests (token via X-CSRFToken header)
    WTF_CSRF_ENABLED = _env_bool("WTF_CSRF_ENABLED", True)

    APP_NAME = "QuoteDesk"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Base URL of the web frontend; supplier response links point here
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")

    # Email delivery: console | smtp | http
    EMAIL_BACKEND = os.environ.get("EMAIL_BACKEND", "console")
    EMAIL_FROM_ADDRESS = os.environ.get("EMAIL_FROM_ADDRESS", "quotes@quotedesk.local")
    EMAIL_FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "QuoteDesk")
    EMAIL_TIMEOUT_SECONDS = float(os.environ.get("EMAIL_TIMEOUT_SECONDS", "15"))

    SMTP_HOST = os.environ.get("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)

    # Hosted email function (POST JSON + bearer key)
    EMAIL_FUNCTION_URL = os.environ.get("EMAIL_FUNCTION_URL")
    EMAIL_FUNCTION_KEY = os.environ.get("EMAIL_FUNCTION_KEY")

    # Quote list refresh interval used by `flask watch-quotes`
    QUOTE_POLL_INTERVAL_SECONDS = float(os.environ.get("QUOTE_POLL_INTERVAL_SECONDS", "20"))


class TestConfig(Config):
    """In-memory database, no CSRF, console email."""

    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    EMAIL_BACKEND = "console"
    LOG_LEVEL = "DEBUG"
