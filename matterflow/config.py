import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _clean_env(name: str, default=None):
    """Read an env var with surrounding quotes and whitespace stripped"""
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip().strip("\"'")
    return value or default


DATABASE_URL = _clean_env("DATABASE_URL", "sqlite:///./matterflow.db")

# Clio API Configuration
CLIO_API_BASE_URL = _clean_env("CLIO_API_BASE_URL", "https://app.clio.com")
CLIO_ACCESS_TOKEN = _clean_env("CLIO_ACCESS_TOKEN")
CLIO_REFRESH_TOKEN = _clean_env("CLIO_REFRESH_TOKEN")
CLIO_CLIENT_ID = _clean_env("CLIO_CLIENT_ID")
CLIO_CLIENT_SECRET = _clean_env("CLIO_CLIENT_SECRET")
CLIO_WEBHOOK_SECRET = _clean_env("CLIO_WEBHOOK_SECRET")
CLIO_TIMEOUT_SECONDS = float(os.getenv("CLIO_TIMEOUT_SECONDS", "30"))

# Security - used to derive the Fernet key for stored OAuth tokens
SECRET_KEY = _clean_env("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Automation settings
# Practice timezone is UTC minus this many hours (4 = EDT, 5 = EST)
TIMEZONE_OFFSET_HOURS = int(os.getenv("TIMEZONE_OFFSET_HOURS", "4"))
ROLLBACK_WINDOW_MINUTES = int(os.getenv("ROLLBACK_WINDOW_MINUTES", "3"))
PROBATE_PRACTICE_AREA_ID = int(os.getenv("PROBATE_PRACTICE_AREA_ID", "45045123"))

# Fixed virtual assistant for the "VA" assignee rule
VA_USER_ID = int(os.getenv("VA_USER_ID", "357379471"))
VA_USER_NAME = os.getenv("VA_USER_NAME", "Jacqui")

# Test mode - only process webhooks for a single matter
TEST_MODE = os.getenv("TEST_MODE", "false").lower() == "true"
TEST_MATTER_ID = int(os.getenv("TEST_MATTER_ID", "1675950832"))

# Event tracking
TRACKING_ENABLED = os.getenv("TRACKING_ENABLED", "true").lower() != "false"
TRACKING_RETENTION_DAYS = int(os.getenv("TRACKING_RETENTION_DAYS", "90"))
