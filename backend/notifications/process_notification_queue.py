"""
CLI script for the instant notification retry queue.

Usage:
    # Drain ready queue items (run every few minutes from a scheduler)
    uv run python -m notifications.process_notification_queue --process-queue

    # Expire stale items and purge old finished ones (run daily)
    uv run python -m notifications.process_notification_queue --cleanup

    # Show queue and throttle statistics
    uv run python -m notifications.process_notification_queue --stats

    # Reset today's throttle counters (all users, or one user/search)
    uv run python -m notifications.process_notification_queue --reset-throttle --user-id <id> --search-id <id>

    # Operator actions on a single queue item
    uv run python -m notifications.process_notification_queue --retry-item 42
    uv run python -m notifications.process_notification_queue --remove-item 42
"""

import argparse
import json

from notifications.error_logger import log_notification_error
from notifications.service import NotificationService, build_service
from shared.utils import print_summary


def process_queue(service: NotificationService) -> dict[str, int]:
    """
    Process one batch of ready queue items.

    Returns:
        Dictionary with stats: processed, sent, failed, requeued
    """
    print("Processing notification queue...")
    try:
        stats = service.queue_processor.process_batch()
    except Exception as e:
        error_file = log_notification_error(
            error_type="queue_processing",
            error_message=str(e),
            context={"step": "process_batch"},
        )
        print(f"✗ Queue processing failed. Details logged to: {error_file}")
        return {"processed": 0, "sent": 0, "failed": 0, "requeued": 0}

    if not stats["processed"]:
        print("No ready notifications to process.")

    print_summary("Notification Queue Processing Complete", stats)
    return stats


def cleanup_queue(service: NotificationService) -> dict[str, int]:
    """Expire stale queue items and purge old finished ones."""
    try:
        stats = service.queue_processor.expire_and_cleanup()
    except Exception as e:
        error_file = log_notification_error(
            error_type="queue_processing",
            error_message=str(e),
            context={"step": "expire_and_cleanup"},
        )
        print(f"✗ Queue cleanup failed. Details logged to: {error_file}")
        return {"expired": 0, "purged": 0}

    print_summary("Notification Queue Cleanup Complete", stats)
    return stats


def show_statistics(service: NotificationService, user_id: str | None = None) -> dict:
    stats = {
        "queue": service.retry_queue.get_statistics(),
        "throttle": service.throttle.get_statistics(user_id),
    }
    print(json.dumps(stats, indent=2, default=str))
    return stats


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Process the instant notification retry queue"
    )

    parser.add_argument(
        "--process-queue", action="store_true", help="Send ready queued notifications"
    )
    parser.add_argument(
        "--cleanup", action="store_true", help="Expire stale items and purge old ones"
    )
    parser.add_argument(
        "--stats", action="store_true", help="Show queue and throttle statistics"
    )
    parser.add_argument(
        "--reset-throttle",
        action="store_true",
        help="Reset today's throttle counters (optionally for --user-id/--search-id)",
    )
    parser.add_argument(
        "--clear-failed", action="store_true", help="Delete all failed queue items"
    )
    parser.add_argument("--retry-item", type=str, metavar="ID", help="Retry one queue item now")
    parser.add_argument("--remove-item", type=str, metavar="ID", help="Remove one queue item")
    parser.add_argument("--user-id", type=str, help="Limit --reset-throttle/--stats to a user")
    parser.add_argument("--search-id", type=str, help="Limit --reset-throttle to a saved search")

    args = parser.parse_args(argv)

    if not any(
        [
            args.process_queue,
            args.cleanup,
            args.stats,
            args.reset_throttle,
            args.clear_failed,
            args.retry_item,
            args.remove_item,
        ]
    ):
        parser.error(
            "Must specify one of --process-queue, --cleanup, --stats, --reset-throttle, "
            "--clear-failed, --retry-item, --remove-item"
        )

    if args.search_id and not args.user_id:
        parser.error("--search-id requires --user-id")

    service = build_service()

    if args.retry_item:
        service.retry_queue.retry_item(args.retry_item)

    if args.remove_item:
        service.retry_queue.remove_item(args.remove_item)

    if args.clear_failed:
        service.retry_queue.clear_failed()

    if args.reset_throttle:
        service.throttle.reset_daily_counts(user_id=args.user_id, search_id=args.search_id)

    if args.process_queue:
        process_queue(service)

    if args.cleanup:
        cleanup_queue(service)

    if args.stats:
        show_statistics(service, args.user_id)


if __name__ == "__main__":
    main()
