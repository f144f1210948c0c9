"""Centralized constants for FlashMaster.

All magic numbers and configuration defaults live here so every layer
imports from a single source of truth.
"""

# ---------- Ease factor ----------
EF_MIN = 1.3
EF_MAX = 2.8
EF_DEFAULT = 2.5

# ---------- Intervals (days) ----------
FIRST_INTERVAL = 1
SECOND_INTERVAL = 6
LAPSE_INTERVAL = 1
MIN_INTERVAL = 1

# ---------- Storage ----------
STORE_FILE_VERSION = 1
STORE_FILE_NAME = "flashmaster.json"
SQLITE_FILE_NAME = "flashmaster.sqlite3"
BACKUPS_DIR_NAME = "backups"
DEFAULT_MAX_BACKUPS = 10
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"

# ---------- Review session ----------
DEFAULT_REVIEW_MAX = 50

# ---------- HTTP API ----------
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 8080

# ---------- Tags ----------
TAG_FORBIDDEN_CHARS = (",", ";")
CSV_TAG_SEPARATOR = ";"
