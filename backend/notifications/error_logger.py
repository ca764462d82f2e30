"""
Error logging utility for the instant notification system.

Writes each matching, throttling, dispatch or queue failure to its own
timestamped report file so operators can review what was skipped.
"""

import json
import os
from datetime import datetime
from typing import Any

ERROR_TYPES = ("ingestion", "matching", "throttle", "dispatch", "queue_processing")


def _log_dir() -> str:
    return os.getenv("NOTIFICATION_LOG_DIR") or os.path.join(os.path.dirname(__file__), "logs")


def log_notification_error(
    error_type: str, error_message: str, context: dict[str, Any] | None = None
) -> str:
    """
    Log a notification error to a timestamped file.

    Args:
        error_type: One of ERROR_TYPES (e.g., 'matching', 'dispatch')
        error_message: The error message
        context: Optional dictionary with additional context (listing_id, search_id, etc.)

    Returns:
        Path to the log file created
    """
    log_dir = _log_dir()
    os.makedirs(log_dir, exist_ok=True)

    # Microseconds keep reports from one busy second apart
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    filename = os.path.join(log_dir, f"notification_error_{error_type}_{timestamp}.txt")

    with open(filename, "w", encoding="utf-8") as f:
        f.write(f"Notification Error Report - {datetime.now()}\n")
        f.write("=" * 60 + "\n\n")
        f.write(f"Error Type: {error_type}\n")
        f.write(f"Error Message: {error_message}\n\n")

        if context:
            f.write("Context:\n")
            f.write("-" * 60 + "\n")
            for key, value in context.items():
                if isinstance(value, (dict, list)):
                    value = json.dumps(value, default=str, indent=2)
                f.write(f"{key}: {value}\n")

    return filename
