"""
Retry queue for throttled or undelivered notifications.

Blocked notifications are stored in notification_queue with a retry time.
A scheduled job (see process_notification_queue.py) drains ready items:
each is claimed, re-checked against throttling, then sent, requeued with
exponential backoff, or failed once its attempts run out. Stale items are
expired and old finished items purged.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from config.notification_settings import (
    QUEUE_BASE_BACKOFF_MINUTES,
    QUEUE_EXPIRE_AFTER_DAYS,
    QUEUE_MAX_ATTEMPTS,
    QUEUE_PURGE_AFTER_DAYS,
    NotificationSettings,
    load_settings,
)
from models.notification import (
    BlockReason,
    CallContext,
    QueueItem,
    QueueStatus,
    ThrottleDecision,
)
from models.search import SavedSearch
from models.types import QueueItemID
from notifications.error_logger import log_notification_error
from notifications.notification_router import (
    TERMINAL_DISPATCH_REASONS,
    NotificationRouter,
    PreferenceContext,
)
from notifications.throttle_manager import ThrottleManager
from shared.utils import local_now

SEARCH_INACTIVE_MESSAGE = "Search inactive"


def backoff_minutes(attempts: int) -> int:
    """Delay before the next try: 5, 10, 20, ... minutes."""
    return QUEUE_BASE_BACKOFF_MINUTES * (2**attempts)


class RetryQueue:
    """Writes and operator actions on notification_queue."""

    def __init__(self, repository: Any, clock: Callable[[], datetime] = local_now):
        self.repository = repository
        self.clock = clock

    def enqueue(
        self,
        search: SavedSearch,
        listing: dict[str, Any],
        match_type: str,
        decision: ThrottleDecision,
    ) -> QueueItem:
        """
        Store a blocked notification for later delivery.

        Args:
            search: Saved search that matched
            listing: Listing snapshot (payload) to deliver later
            match_type: Event type that produced the match
            decision: The blocking throttle decision

        Returns:
            The stored QueueItem
        """
        item = QueueItem(
            user_id=search.user_id,
            saved_search_id=search.id,
            listing_id=str(listing.get("listing_id", "")),
            match_type=match_type,
            listing_data=listing,
            reason_blocked=decision.reason or BlockReason.SYSTEM,
            retry_after=decision.retry_after or self.clock(),
            max_attempts=QUEUE_MAX_ATTEMPTS,
            created_at=self.clock(),
        )
        stored = self.repository.insert_queue_item(item)
        print(
            f"  ⏸  Queued listing {item.listing_id} for user {item.user_id} "
            f"({item.reason_blocked.value}, retry after {item.retry_after.isoformat(timespec='minutes')})"
        )
        return stored

    def retry_item(self, item_id: QueueItemID) -> bool:
        """Put an item back in the queue for immediate retry with a fresh attempt count."""
        item = self.repository.get_queue_item(item_id)
        if item is None:
            print(f"⚠️  Queue item {item_id} not found")
            return False

        self.repository.update_queue_item(
            item_id,
            {
                "status": QueueStatus.QUEUED,
                "retry_after": self.clock(),
                "retry_attempts": 0,
                "error_message": None,
            },
        )
        print(f"✓ Queue item {item_id} queued for retry")
        return True

    def remove_item(self, item_id: QueueItemID) -> bool:
        removed = self.repository.delete_queue_item(item_id)
        if removed:
            print(f"✓ Removed queue item {item_id}")
        else:
            print(f"⚠️  Queue item {item_id} not found")
        return removed

    def clear_failed(self) -> int:
        cleared = self.repository.clear_failed_queue_items()
        print(f"✓ Cleared {cleared} failed queue item(s)")
        return cleared

    def get_statistics(self) -> dict[str, int]:
        """Item counts per status for the last 7 days; 'sent' counts today only."""
        now = self.clock()
        rows = self.repository.get_queue_rows(now - timedelta(days=QUEUE_EXPIRE_AFTER_DAYS))

        stats = {status.value: 0 for status in QueueStatus}
        for row in rows:
            status = row.get("status")
            if status not in stats:
                continue
            if status == QueueStatus.SENT.value:
                processed = row.get("processed_at")
                if not processed or not str(processed).startswith(now.date().isoformat()):
                    continue
            stats[status] += 1
        return stats


class QueueProcessor:
    """Drains ready queue items through the throttle and router again."""

    def __init__(
        self,
        repository: Any,
        throttle: ThrottleManager,
        router: NotificationRouter,
        settings: NotificationSettings | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.repository = repository
        self.throttle = throttle
        self.router = router
        self.settings = settings or load_settings()
        self.clock = clock

    def process_batch(self) -> dict[str, int]:
        """
        Process up to one batch of ready items.

        Returns:
            Dictionary with stats: processed, sent, failed, requeued
        """
        stats = {"processed": 0, "sent": 0, "failed": 0, "requeued": 0}
        now = self.clock()

        items = self.repository.get_ready_queue_items(now, self.settings.queue_batch_size)
        if not items:
            return stats

        searches = self.repository.get_searches_by_ids(
            list({item.saved_search_id for item in items})
        )
        preferences = PreferenceContext(self.repository)

        for item in items:
            if not self.repository.claim_queue_item(item.id, self.clock()):
                continue

            stats["processed"] += 1
            search = searches.get(item.saved_search_id)
            if search is None:
                # Search deleted or paused since the item was queued
                self._fail(item, SEARCH_INACTIVE_MESSAGE)
                stats["failed"] += 1
                continue

            try:
                outcome = self._process_item(item, search, preferences)
            except Exception as e:
                error_file = log_notification_error(
                    error_type="queue_processing",
                    error_message=str(e),
                    context={
                        "queue_id": item.id,
                        "user_id": item.user_id,
                        "search_id": item.saved_search_id,
                        "listing_id": item.listing_id,
                    },
                )
                print(f"  ✗ Queue item {item.id} failed. Details logged to: {error_file}")
                outcome = self._requeue(item, BlockReason.SYSTEM, error_message=str(e))
            stats[outcome] += 1

        return stats

    def _process_item(
        self, item: QueueItem, search: SavedSearch, preferences: PreferenceContext
    ) -> str:
        prefs = preferences.get(item.user_id, item.saved_search_id)
        decision = self.throttle.decide(
            item.user_id, item.saved_search_id, item.match_type, item.listing_data, prefs
        )
        if not decision.allowed:
            return self._requeue(item, decision.reason or BlockReason.SYSTEM, decision.retry_after)

        result = self.router.dispatch(
            search,
            item.listing_data,
            item.match_type,
            context=CallContext.REQUEUED,
            preferences=preferences,
        )

        if result.delivered:
            self.repository.update_queue_item(
                item.id,
                {"status": QueueStatus.SENT, "processed_at": self.clock(), "error_message": None},
            )
            return "sent"

        if result.reason in TERMINAL_DISPATCH_REASONS:
            self._fail(item, f"Not delivered: {result.reason}")
            return "failed"

        message = "; ".join(result.errors) or result.reason or "not delivered"
        return self._requeue(item, BlockReason.SYSTEM, error_message=message)

    def _requeue(
        self,
        item: QueueItem,
        reason: BlockReason,
        retry_after: datetime | None = None,
        error_message: str | None = None,
    ) -> str:
        """Back off and try again later, or fail the item when out of attempts."""
        attempts = item.retry_attempts + 1
        if attempts >= item.max_attempts:
            self._fail(
                item,
                error_message or f"Max retry attempts reached (last blocked: {reason.value})",
                attempts,
            )
            return "failed"

        now = self.clock()
        backoff = now + timedelta(minutes=backoff_minutes(item.retry_attempts))
        self.repository.update_queue_item(
            item.id,
            {
                "status": QueueStatus.QUEUED,
                "reason_blocked": reason,
                "retry_after": max(backoff, retry_after) if retry_after else backoff,
                "retry_attempts": attempts,
                "error_message": error_message,
            },
        )
        return "requeued"

    def _fail(self, item: QueueItem, message: str, attempts: int | None = None) -> None:
        fields: dict[str, Any] = {
            "status": QueueStatus.FAILED,
            "processed_at": self.clock(),
            "error_message": message,
        }
        if attempts is not None:
            fields["retry_attempts"] = attempts
        self.repository.update_queue_item(item.id, fields)
        print(f"  ✗ Queue item {item.id} failed: {message}")

    def expire_and_cleanup(self) -> dict[str, int]:
        """
        Expire items stuck for more than 7 days and purge finished items
        older than 30 days.

        Returns:
            Dictionary with stats: expired, purged
        """
        now = self.clock()
        expired = self.repository.expire_queue_items(
            now - timedelta(days=QUEUE_EXPIRE_AFTER_DAYS), now
        )
        purged = self.repository.purge_queue_items(now - timedelta(days=QUEUE_PURGE_AFTER_DAYS))
        return {"expired": expired, "purged": purged}
