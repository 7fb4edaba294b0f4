"""Engine runtime settings for workflow simulation.

All values read from environment variables with sensible defaults. Import
from here instead of hardcoding.

Provider credentials are never read from here: they travel with each node's
``providerConfig``.
"""

from __future__ import annotations

import os


def _int(key: str, default: int) -> int:
    return int(os.getenv(key, str(default)))


def _float(key: str, default: float) -> float:
    return float(os.getenv(key, str(default)))


def _str(key: str, default: str) -> str:
    return os.getenv(key, default)


# =====================================================================
# Simulated providers
# =====================================================================

# Multiplier applied to every simulated provider delay (0 disables sleeping)
SIMULATED_DELAY_SCALE = _float("KOBE_SIMULATED_DELAY_SCALE", 1.0)

# Connection string used by database actions that do not configure one
DEFAULT_DB_CONNECTION = _str("KOBE_DEFAULT_DB_CONNECTION", "mock://localhost:3306/testdb")


# =====================================================================
# HTTP API service
# =====================================================================

# Default request timeout (milliseconds, matches node configuration units)
HTTP_TIMEOUT_MS = _int("KOBE_HTTP_TIMEOUT_MS", 30000)


# =====================================================================
# File storage / webhooks
# =====================================================================

# Root directory for the "local" file storage provider
LOCAL_STORAGE_ROOT = _str("KOBE_LOCAL_STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))

# Public base URL reported for registered webhooks
WEBHOOK_BASE_URL = _str("KOBE_WEBHOOK_BASE_URL", "https://api.kobeapp.com/webhooks")

# Dispatches kept in the in-memory webhook history (oldest dropped first)
WEBHOOK_HISTORY_LIMIT = _int("KOBE_WEBHOOK_HISTORY_LIMIT", 1000)


# =====================================================================
# Action retries
# =====================================================================

# Upper bound on per-action retries, whatever the node configures
ACTION_MAX_RETRIES = _int("KOBE_ACTION_MAX_RETRIES", 5)

# Default delay between retries (milliseconds)
ACTION_RETRY_DELAY_MS = _int("KOBE_ACTION_RETRY_DELAY_MS", 1000)


# =====================================================================
# API server binding (used by the kobe-api entry point)
# =====================================================================

API_HOST = _str("API_HOST", "0.0.0.0")
API_PORT = _int("API_PORT", 8000)


# =====================================================================
# Logging
# =====================================================================

LOG_LEVEL = _str("KOBE_LOG_LEVEL", "INFO")

# Directory for engine.log / api.log
LOG_DIR = _str("LOG_DIR", os.path.join(os.getcwd(), "logs"))

# Set to 0 to log to the console only
LOG_TO_FILE = _int("KOBE_LOG_TO_FILE", 1) != 0
