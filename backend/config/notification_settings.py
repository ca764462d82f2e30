"""
Global switches and tunables for instant listing notifications.

Values come from the environment (or a local .env) and are validated once
into a NotificationSettings instance. The market timezone itself is read by
shared.utils so every module agrees on one local time reference.
"""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()

# Retry queue
QUEUE_BATCH_SIZE = 20
QUEUE_MAX_ATTEMPTS = 3
QUEUE_BASE_BACKOFF_MINUTES = 5
QUEUE_EXPIRE_AFTER_DAYS = 7
QUEUE_PURGE_AFTER_DAYS = 30

# Throttling
DEFAULT_MAX_DAILY_NOTIFICATIONS = 50
DAILY_LIMIT_RETRY_HOUR = 6
RATE_LIMIT_WINDOW_SECONDS = 60
BURST_GAP_SECONDS = 5
BURST_MAX_NOTIFICATIONS = 30
BURST_MEMORY_SECONDS = 300
RATE_LIMIT_RETRY_MINUTES = 5

# Bulk import detection
BULK_IMPORT_WINDOW_SECONDS = 60
BULK_IMPORT_THRESHOLD = 90
BULK_IMPORT_BATCH_MODE_MINUTES = 5
BULK_IMPORT_RETRY_MINUTES = 30


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class NotificationSettings(BaseModel):
    """Admin-level notification settings."""

    model_config = ConfigDict(frozen=True)

    global_throttling_enabled: bool = True
    global_quiet_hours_enabled: bool = True
    override_user_quiet_hours: bool = False
    default_quiet_start: str = "22:00"
    default_quiet_end: str = "06:00"
    bulk_import_throttle_enabled: bool = True
    queue_batch_size: int = Field(QUEUE_BATCH_SIZE, ge=1, le=500)


def load_settings() -> NotificationSettings:
    """Build settings from environment variables."""
    return NotificationSettings(
        global_throttling_enabled=_env_bool("GLOBAL_THROTTLING_ENABLED", True),
        global_quiet_hours_enabled=_env_bool("GLOBAL_QUIET_HOURS_ENABLED", True),
        override_user_quiet_hours=_env_bool("OVERRIDE_USER_QUIET_HOURS", False),
        default_quiet_start=os.getenv("DEFAULT_QUIET_START", "22:00"),
        default_quiet_end=os.getenv("DEFAULT_QUIET_END", "06:00"),
        bulk_import_throttle_enabled=_env_bool("BULK_IMPORT_THROTTLE_ENABLED", True),
        queue_batch_size=int(os.getenv("NOTIFICATION_QUEUE_BATCH_SIZE", QUEUE_BATCH_SIZE)),
    )
