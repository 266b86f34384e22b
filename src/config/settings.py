"""Environment-driven settings for the WhatsApp relay.

Values are read on every call so that a changed environment (or a test
monkeypatching it) is picked up without reloading modules.
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

PROVIDER_CLOUD = "cloud"
PROVIDER_SESSION = "session"


def _get_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _get_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


def api_secret() -> Optional[str]:
    """Shared secret expected in the X-API-Key header."""
    return os.getenv("API_SECRET") or None


def provider() -> str:
    """Which messaging provider this process talks to."""
    return os.getenv("WHATSAPP_PROVIDER", PROVIDER_CLOUD).strip().lower()


def whatsapp_token() -> Optional[str]:
    return os.getenv("WHATSAPP_TOKEN") or None


def phone_number_id() -> Optional[str]:
    return os.getenv("PHONE_NUMBER_ID") or None


def graph_api_version() -> str:
    return os.getenv("GRAPH_API_VERSION", "v22.0")


def default_country_code() -> str:
    return os.getenv("DEFAULT_COUNTRY_CODE", "55")


def waha_base_url() -> str:
    return os.getenv("WAHA_BASE_URL", "http://localhost:3000").rstrip("/")


def waha_session() -> str:
    return os.getenv("WAHA_SESSION", "default")


def waha_api_key() -> Optional[str]:
    return os.getenv("WAHA_API_KEY") or None


def waha_poll_interval() -> float:
    return _get_float("WAHA_POLL_INTERVAL", 2.0)


def rate_limit_max_requests() -> int:
    return _get_int("RATE_LIMIT_MAX_REQUESTS", 100)


def rate_limit_window_seconds() -> int:
    return _get_int("RATE_LIMIT_WINDOW_SECONDS", 15 * 60)


def service_name() -> str:
    return os.getenv("SERVICE_NAME", "whatsapp-relay")


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def host() -> str:
    return os.getenv("HOST", "0.0.0.0")


def port() -> int:
    return _get_int("PORT", 3002)
