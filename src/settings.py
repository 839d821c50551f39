"""Static configuration for expirywatch.

All user-editable settings (scheduler cadence, dispatch limits, notification
method, logging) live in a single JSON file for quick edits without touching
Python. Secrets stay in the environment (.env).
"""

import json
import os

from dotenv import load_dotenv

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits at the project root unless EXPIRYWATCH_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("EXPIRYWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _resolve_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Where to store the SQLite database.
_database = _CONFIG.get("database", {})
DB_PATH = _resolve_path(_database.get("path", "expirywatch.db"))

# Scheduler cadence. Lead times are whole days, so minutes are plenty.
_scheduler = _CONFIG.get("scheduler", {})
SCHEDULER_INTERVAL_SECONDS = float(_scheduler.get("interval_seconds", 300))

# Dispatch limits for one pass.
# - MAX_CONCURRENCY: parallel deliveries within a pass
# - SEND_TIMEOUT_SECONDS: upper bound for one record's delivery call
_dispatch = _CONFIG.get("dispatch", {})
DISPATCH_MAX_CONCURRENCY = int(_dispatch.get("max_concurrency", 4))
DISPATCH_SEND_TIMEOUT_SECONDS = float(_dispatch.get("send_timeout_seconds", 30))

# Reference mapping lookups are bounded too, so validation never hangs.
_mappings = _CONFIG.get("mappings", {})
LOOKUP_TIMEOUT_SECONDS = float(_mappings.get("lookup_timeout_seconds", 5))
# Optional display names for categories used in notification text.
CATEGORY_ALIASES = dict(_mappings.get("aliases", {}))

# Notification method switches adapters without changing core logic.
_notifications = _CONFIG.get("notifications", {})
NOTIFICATION_METHOD = _notifications.get("notification_method", "bot")
BOT_REQUEST_TIMEOUT_SECONDS = float(_notifications.get("bot_request_timeout_seconds", 10))

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})

# Telegram account credentials for notification_method=user, from .env.
TELEGRAM_API_ID = os.getenv("API_ID")
TELEGRAM_API_HASH = os.getenv("API_HASH")
TELEGRAM_SESSION_PATH = _resolve_path(os.getenv("SESSION_NAME", "expirywatch"))
