"""Runtime settings for the storefront order core.

Values are read once from environment variables at import time. Code that
consumes them looks them up with ``getattr(settings, NAME, default)`` at
call time, so a test can override a single value without rebuilding the
services.
"""

import os


def _bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# ---- Database ----
DB_HOST = os.getenv("DB_HOST", "storefront-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "storefront")
DB_USER = os.getenv("DB_USER", "storefront_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "storefront-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# ---- Downstream payments service ----
USE_HTTP_ADAPTERS = _bool("USE_HTTP_ADAPTERS", "false")
PAYMENTS_BASE_URL = os.getenv("PAYMENTS_BASE_URL", "http://payments:9002")
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "5.0"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30.0"))

# ---- Money ----
CURRENCY = os.getenv("CURRENCY", "USD")

# ---- Placement saga ----
PAYMENT_TIMEOUT_SECS = float(os.getenv("PAYMENT_TIMEOUT_SECS", "10.0"))
PAYMENT_WORKERS = int(os.getenv("PAYMENT_WORKERS", "8"))
PLACEMENT_TIMEOUT_SECS = float(os.getenv("PLACEMENT_TIMEOUT_SECS", "30.0"))
RESERVATION_TTL_SECS = float(os.getenv("RESERVATION_TTL_SECS", "300"))
RESERVATION_SWEEP_INTERVAL_SECS = float(os.getenv("RESERVATION_SWEEP_INTERVAL_SECS", "60"))
RESERVATION_SWEEP_BATCH = int(os.getenv("RESERVATION_SWEEP_BATCH", "100"))

# "wait" blocks up to STOCK_LOCK_TIMEOUT_SECS, "nowait" fails fast
STOCK_LOCK_WAIT = os.getenv("STOCK_LOCK_WAIT", "wait")
STOCK_LOCK_TIMEOUT_SECS = float(os.getenv("STOCK_LOCK_TIMEOUT_SECS", "5.0"))

# ---- Notifications ----
NOTIFICATION_WORKERS = int(os.getenv("NOTIFICATION_WORKERS", "2"))

# ---- HTTP API ----
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(1 * 1024 * 1024)))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# ---- Reporting thresholds ----
READY_TO_SHIP_AFTER_DAYS = int(os.getenv("READY_TO_SHIP_AFTER_DAYS", "3"))
PENDING_DELIVERY_AFTER_DAYS = int(os.getenv("PENDING_DELIVERY_AFTER_DAYS", "7"))
PENDING_CONFIRMATION_AFTER_HOURS = int(os.getenv("PENDING_CONFIRMATION_AFTER_HOURS", "24"))
