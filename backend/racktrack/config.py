# backend/racktrack/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///racktrack.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Bearer session lifetime for tokens issued by `flask users issue-token`
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 24)

    # QuickBooks Online OAuth client (both spellings are accepted)
    QB_CLIENT_ID = os.environ.get("QB_CLIENT_ID") or os.environ.get("QUICKBOOKS_CLIENT_ID", "")
    QB_CLIENT_SECRET = os.environ.get("QB_CLIENT_SECRET") or os.environ.get("QUICKBOOKS_CLIENT_SECRET", "")
    QB_REDIRECT_URI = (
        os.environ.get("QB_REDIRECT_URI")
        or os.environ.get("QUICKBOOKS_REDIRECT_URI")
        or "http://localhost:5000/api/quickbooks/callback"
    )
    QB_SCOPE = os.environ.get("QB_SCOPE", "com.intuit.quickbooks.accounting")
    QUICKBOOKS_SANDBOX = _env_bool("QUICKBOOKS_SANDBOX", False)

    # Every outbound call to Intuit is bounded by this timeout
    QB_HTTP_TIMEOUT_SECONDS = float(os.environ.get("QB_HTTP_TIMEOUT_SECONDS", "15"))

    QB_SYNC_PAGE_SIZE = _env_int("QB_SYNC_PAGE_SIZE", 20)
    QB_SYNC_MAX_PAGES = _env_int("QB_SYNC_MAX_PAGES", 50)

    # Sweep refreshes tokens expiring within this window
    QB_REFRESH_WINDOW_MINUTES = _env_int("QB_REFRESH_WINDOW_MINUTES", 30)
    # On-demand refresh (sync, estimate push) kicks in this close to expiry
    QB_TOKEN_EXPIRY_BUFFER_MINUTES = _env_int("QB_TOKEN_EXPIRY_BUFFER_MINUTES", 5)
    QB_REFRESH_MAX_WORKERS = _env_int("QB_REFRESH_MAX_WORKERS", 4)

    QB_STATE_TTL_SECONDS = _env_int("QB_STATE_TTL_SECONDS", 600)
    QB_STATE_COOKIE_SECURE = _env_bool("QB_STATE_COOKIE_SECURE", False)
    QB_ADMIN_REDIRECT_PATH = os.environ.get("QB_ADMIN_REDIRECT_PATH", "/admin/quickbooks")

    # Shared secret presented by the scheduled token refresh invoker
    CRON_SECRET = os.environ.get("CRON_SECRET", "")


def validate_quickbooks_config(config) -> list[str]:
    """Return human-readable problems with the QuickBooks client settings."""
    errors = []
    if not config.get("QB_CLIENT_ID"):
        errors.append("QUICKBOOKS_CLIENT_ID is not configured")
    if not config.get("QB_CLIENT_SECRET"):
        errors.append("QUICKBOOKS_CLIENT_SECRET is not configured")
    timeout = config.get("QB_HTTP_TIMEOUT_SECONDS")
    if timeout is None or float(timeout) <= 0:
        errors.append("QB_HTTP_TIMEOUT_SECONDS must be a positive number")
    return errors
