"""
Application configuration and constants for the Station Dispatch API Server.

This module centralizes environment-based configuration, lock timings,
timezones and the business constants of the dispatch workflow.

Configuration values can be overridden via environment variables.
"""

from os import environ
from zoneinfo import ZoneInfo

from app.src.enums import PaymentMethod


# ---------------------------------------------------------------------------
# Application metadata
# ---------------------------------------------------------------------------
API_TITLE = "Station Dispatch API Server"
API_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# PostgreSQL configuration
# ---------------------------------------------------------------------------
PSQL_DB_DRIVER = environ.get("PSQL_DB_DRIVER", "postgresql")
PSQL_DB_USERNAME = environ.get("PSQL_DB_USERNAME", "postgres")
PSQL_DB_PORT = environ.get("PSQL_DB_PORT", "5432")
PSQL_DB_PASSWORD = environ.get("PSQL_DB_PASSWORD", "password")
PSQL_DB_HOST = environ.get("PSQL_DB_HOST", "localhost")
PSQL_DB_NAME = environ.get("PSQL_DB_NAME", "postgres")


# ---------------------------------------------------------------------------
# OpenObserve configuration
# ---------------------------------------------------------------------------
OPENOBSERVE_PROTOCOL = environ.get("OPENOBSERVE_PROTOCOL", "http")
OPENOBSERVE_HOST = environ.get("OPENOBSERVE_HOST", "localhost")
OPENOBSERVE_PORT = environ.get("OPENOBSERVE_PORT", "5080")
OPENOBSERVE_USERNAME = environ.get("OPENOBSERVE_USERNAME", "admin@station.local")
OPENOBSERVE_PASSWORD = environ.get("OPENOBSERVE_PASSWORD", "password")
OPENOBSERVE_ORG = environ.get("OPENOBSERVE_ORG", "station")
OPENOBSERVE_STREAM = environ.get("OPENOBSERVE_STREAM", "station-dispatch-server")
OPENOBSERVE_ENABLED = environ.get("OPENOBSERVE_ENABLED", "true").lower() == "true"
OPENOBSERVE_TIMEOUT = 5  # HTTP timeout (in seconds)


# ---------------------------------------------------------------------------
# Redis configuration
# ---------------------------------------------------------------------------
REDIS_HOST = environ.get("REDIS_HOST", "localhost")
REDIS_PORT = environ.get("REDIS_PORT", "6379")
REDIS_PASSWORD = environ.get("REDIS_PASSWORD", "password")


# ---------------------------------------------------------------------------
# Redis mutex lock constants
# ---------------------------------------------------------------------------
MUTEX_LOCK_TIMEOUT = 10  # Lock timeout (in seconds)
MUTEX_LOCK_MAX_WAIT_TIME = 60  # Max blocking wait time (in seconds)


# ---------------------------------------------------------------------------
# Timezone constants
# ---------------------------------------------------------------------------
TMZ_PRIMARY = ZoneInfo("UTC")
TMZ_STATION = ZoneInfo(environ.get("STATION_TIMEZONE", "Asia/Ho_Chi_Minh"))


# ---------------------------------------------------------------------------
# Dispatch workflow constants
# ---------------------------------------------------------------------------
DEFAULT_PAYMENT_METHOD = PaymentMethod.CASH
MONTHLY_PAYMENT_TYPE = "monthly"  # metadata["paymentType"] of monthly payers
PAYMENT_TYPE_KEY = "paymentType"
DECIMAL_PLACES = 2  # Max decimal places for prices and quantities
MAX_NOTES_LENGTH = 1024
MAX_LIST_LIMIT = 100
