"""
Throttling for instant listing notifications.

Decides whether a matched notification may go out now or must wait in the
retry queue: quiet hours, the per-search daily cap, rate limiting with a
burst allowance, and bulk-import backpressure. The manager is the only
writer of the daily notification counters. Rate-limit history and batch
mode are read from the store, so every process sees the same state; the
per-key locks only serialize decisions inside one process.
"""

import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime, time, timedelta
from typing import Any

from config.notification_settings import (
    BULK_IMPORT_BATCH_MODE_MINUTES,
    BULK_IMPORT_RETRY_MINUTES,
    BULK_IMPORT_THRESHOLD,
    BULK_IMPORT_WINDOW_SECONDS,
    BURST_GAP_SECONDS,
    BURST_MAX_NOTIFICATIONS,
    BURST_MEMORY_SECONDS,
    DAILY_LIMIT_RETRY_HOUR,
    RATE_LIMIT_RETRY_MINUTES,
    RATE_LIMIT_WINDOW_SECONDS,
    NotificationSettings,
    load_settings,
)
from models.notification import (
    BlockReason,
    NotificationPreferences,
    ThrottleDecision,
)
from models.types import SearchID, UserID
from notifications.error_logger import log_notification_error
from shared.utils import local_now, parse_time_of_day

ThrottleKey = tuple[UserID, SearchID]


def is_quiet_hours(now: time, start: time, end: time) -> bool:
    """
    Whether a wall-clock time falls inside a quiet window.

    A window whose start is later than its end wraps past midnight.
    Both bounds are inclusive.
    """
    if start > end:
        return now >= start or now <= end
    return start <= now <= end


def quiet_hours_retry_after(now: datetime, end: time) -> datetime:
    """End of the quiet window: later today if still ahead, otherwise tomorrow."""
    today_end = now.replace(hour=end.hour, minute=end.minute, second=end.second, microsecond=0)
    if now.time() <= end:
        return today_end
    return today_end + timedelta(days=1)


def effective_quiet_window(
    settings: NotificationSettings, preferences: NotificationPreferences
) -> tuple[time, time] | None:
    """
    The (start, end) quiet window that applies to a user, or None when off.

    Admins can switch quiet hours off globally or force the default window
    on everyone.
    """
    if not settings.global_quiet_hours_enabled or not preferences.quiet_hours_enabled:
        return None

    if settings.override_user_quiet_hours:
        start, end = settings.default_quiet_start, settings.default_quiet_end
    else:
        start, end = preferences.quiet_hours_start, preferences.quiet_hours_end

    return (
        parse_time_of_day(start, settings.default_quiet_start),
        parse_time_of_day(end, settings.default_quiet_end),
    )


def daily_limit_retry_after(now: datetime) -> datetime:
    """Daily caps reset overnight; retry at 06:00 local tomorrow."""
    tomorrow = now + timedelta(days=1)
    return tomorrow.replace(hour=DAILY_LIMIT_RETRY_HOUR, minute=0, second=0, microsecond=0)


class BulkImportDetector:
    """
    Rolling count of listing events to spot feed backfills.

    More than BULK_IMPORT_THRESHOLD events inside BULK_IMPORT_WINDOW_SECONDS
    switches batch mode on for BULK_IMPORT_BATCH_MODE_MINUTES. With a store,
    the batch mode end time is written there so other processes (the
    scheduled queue job) see it too.
    """

    def __init__(
        self,
        store: Any = None,
        threshold: int = BULK_IMPORT_THRESHOLD,
        window: timedelta = timedelta(seconds=BULK_IMPORT_WINDOW_SECONDS),
        batch_mode: timedelta = timedelta(minutes=BULK_IMPORT_BATCH_MODE_MINUTES),
    ):
        self.store = store
        self.threshold = threshold
        self.window = window
        self.batch_mode = batch_mode
        self._events: deque[datetime] = deque()
        self._batch_mode_until: datetime | None = None
        self._lock = threading.Lock()

    def register(self, now: datetime) -> bool:
        """Record one event; returns True if batch mode is on afterwards."""
        with self._lock:
            self._events.append(now)
            self._trim(now)
            event_count = len(self._events)
            triggered = event_count > self.threshold
            if triggered:
                if not self._active(now):
                    print(
                        f"  ⚠️  Bulk import detected ({event_count} events in "
                        f"{int(self.window.total_seconds())}s), switching to batch mode"
                    )
                self._batch_mode_until = now + self.batch_mode
            until = self._batch_mode_until

        if triggered and until is not None:
            self._publish(until, event_count, now)
        return self.is_active(now)

    def is_active(self, now: datetime) -> bool:
        with self._lock:
            if self._active(now):
                return True
        if self.store is None:
            return False

        try:
            until = self.store.get_bulk_import_until()
        except Exception as e:
            log_notification_error(
                error_type="throttle",
                error_message=f"Could not read bulk import state: {e}",
            )
            return False
        return until is not None and now < until

    def recent_count(self, now: datetime) -> int:
        with self._lock:
            self._trim(now)
            return len(self._events)

    def _active(self, now: datetime) -> bool:
        return self._batch_mode_until is not None and now < self._batch_mode_until

    def _publish(self, until: datetime, event_count: int, now: datetime) -> None:
        if self.store is None:
            return
        try:
            self.store.set_bulk_import_until(until, event_count, now)
        except Exception as e:
            # Batch mode still applies in this process
            log_notification_error(
                error_type="throttle",
                error_message=f"Could not store bulk import state: {e}",
                context={"batch_mode_until": until.isoformat(), "event_count": event_count},
            )

    def _trim(self, now: datetime) -> None:
        cutoff = now - self.window
        while self._events and self._events[0] <= cutoff:
            self._events.popleft()


class ThrottleManager:
    """Allow-or-block decisions for one notification at a time."""

    def __init__(
        self,
        repository: Any,
        settings: NotificationSettings | None = None,
        clock: Callable[[], datetime] = local_now,
        bulk_detector: BulkImportDetector | None = None,
    ):
        self.repository = repository
        self.settings = settings or load_settings()
        self.clock = clock
        self.bulk_detector = bulk_detector or BulkImportDetector(store=repository)

        self._locks: dict[ThrottleKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def decide(
        self,
        user_id: UserID,
        search_id: SearchID,
        event_type: str,
        payload: dict[str, Any] | None,
        preferences: NotificationPreferences,
    ) -> ThrottleDecision:
        """
        Decide whether a notification can be sent right now.

        Checks run in order: global switch, user switch, quiet hours, daily
        cap, rate limit, bulk import. An allowed decision is recorded against
        today's counter before returning; a blocked one bumps today's
        throttled count.

        Args:
            user_id: Recipient
            search_id: Saved search that matched
            event_type: Match type (new_listing, price_drop, ...)
            payload: Listing snapshot being notified about (not inspected by the checks)
            preferences: Resolved preferences for this user and search

        Returns:
            ThrottleDecision
        """
        now = self.clock()
        key = (user_id, search_id)

        with self._lock_for(key):
            if not self.settings.global_throttling_enabled or not preferences.throttling_enabled:
                self._record_send(key, now)
                return ThrottleDecision.allow()

            window = self.quiet_window(preferences)
            if window and is_quiet_hours(now.time(), *window):
                return self._block(key, now, BlockReason.QUIET_HOURS,
                                   quiet_hours_retry_after(now, window[1]))

            count = self.repository.get_throttle_count(user_id, search_id, now.date())
            if count >= preferences.max_daily_notifications:
                return self._block(key, now, BlockReason.DAILY_LIMIT, daily_limit_retry_after(now))

            if self._is_rate_limited(key, now):
                return self._block(key, now, BlockReason.RATE_LIMITED,
                                   now + timedelta(minutes=RATE_LIMIT_RETRY_MINUTES))

            if self.settings.bulk_import_throttle_enabled and self.bulk_detector.is_active(now):
                return self._block(key, now, BlockReason.BULK_IMPORT,
                                   now + timedelta(minutes=BULK_IMPORT_RETRY_MINUTES))

            self._record_send(key, now)
            return ThrottleDecision.allow()

    def quiet_window(self, preferences: NotificationPreferences) -> tuple[time, time] | None:
        return effective_quiet_window(self.settings, preferences)

    def register_import_event(self, now: datetime | None = None) -> bool:
        """Feed one listing event to the bulk-import detector."""
        return self.bulk_detector.register(now or self.clock())

    def is_bulk_import_active(self) -> bool:
        return self.bulk_detector.is_active(self.clock())

    def reset_daily_counts(
        self, user_id: UserID | None = None, search_id: SearchID | None = None
    ) -> int:
        """Zero today's counters, for one user/search or for everyone."""
        now = self.clock()
        reset = self.repository.reset_throttle_counts(now.date(), user_id=user_id, search_id=search_id)
        self.repository.clear_rate_state(user_id=user_id, search_id=search_id)

        print(f"✓ Reset {reset} throttle record(s) for {now.date().isoformat()}")
        return reset

    def get_statistics(self, user_id: UserID | None = None) -> dict[str, Any]:
        """
        Today's throttle numbers.

        With a user_id, returns that user's per-search rows; otherwise totals
        across all users.
        """
        now = self.clock()
        rows = self.repository.get_throttle_rows(now.date(), user_id=user_id)

        if user_id is not None:
            return {"date": now.date().isoformat(), "searches": [r.model_dump(mode="json") for r in rows]}

        return {
            "date": now.date().isoformat(),
            "total_users": len({r.user_id for r in rows}),
            "total_sent": sum(r.notification_count for r in rows),
            "total_throttled": sum(r.throttled_count for r in rows),
            "bulk_import_active": self.bulk_detector.is_active(now),
            "recent_import_events": self.bulk_detector.recent_count(now),
        }

    def _lock_for(self, key: ThrottleKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def _is_rate_limited(self, key: ThrottleKey, now: datetime) -> bool:
        """
        At most one send per RATE_LIMIT_WINDOW_SECONDS, except in bursts.

        Sends arriving less than BURST_GAP_SECONDS after the previous one form
        a burst; up to BURST_MAX_NOTIFICATIONS of them go out unthrottled.
        The last send time and burst count come from the store, so sends made
        by another process count too.
        """
        user_id, search_id = key
        state = self.repository.get_rate_state(user_id, search_id)
        if state is None:
            return False

        last_sent = state.last_notification_at
        if last_sent is not None and (now - last_sent).total_seconds() >= RATE_LIMIT_WINDOW_SECONDS:
            last_sent = None

        if last_sent is not None and (now - last_sent).total_seconds() < BURST_GAP_SECONDS:
            burst_count = state.burst_count
            if state.burst_expires_at is None or state.burst_expires_at < now:
                burst_count = 0
            burst_count += 1
            self.repository.save_burst_state(
                user_id, search_id, burst_count, now + timedelta(seconds=BURST_MEMORY_SECONDS)
            )
            return burst_count > BURST_MAX_NOTIFICATIONS

        if state.burst_count:
            self.repository.save_burst_state(user_id, search_id, 0, None)
        return last_sent is not None

    def _record_send(self, key: ThrottleKey, now: datetime) -> None:
        """Count the send; the same RPC stamps last_notification_at for rate limiting."""
        user_id, search_id = key
        self.repository.increment_notification_count(user_id, search_id, now.date(), now)

    def _block(
        self, key: ThrottleKey, now: datetime, reason: BlockReason, retry_after: datetime
    ) -> ThrottleDecision:
        user_id, search_id = key
        try:
            self.repository.increment_throttled_count(user_id, search_id, now.date())
        except Exception as e:
            # A failed statistic write never changes the decision
            log_notification_error(
                error_type="throttle",
                error_message=f"Could not record throttled notification: {e}",
                context={"user_id": user_id, "search_id": search_id, "reason": reason.value},
            )
        return ThrottleDecision.blocked(reason, retry_after)
