"""
Listing event ingestion for instant notifications.

Each incoming listing change is checked against every active instant saved
search. Matches go through the throttle; allowed ones are dispatched
immediately, blocked ones land in the retry queue.

Errors are logged and reported in the returned stats, never raised, so a
bad search or a failing channel cannot stall the listing feed.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from config.notification_settings import RATE_LIMIT_RETRY_MINUTES
from models.listing import EventType, ListingEvent
from models.notification import BlockReason, CallContext, ThrottleDecision
from models.search import SavedSearch
from notifications.error_logger import log_notification_error
from notifications.notification_router import (
    TERMINAL_DISPATCH_REASONS,
    NotificationRouter,
    PreferenceContext,
)
from notifications.retry_queue import RetryQueue
from notifications.search_matcher import SearchMatcher, has_significant_changes
from notifications.throttle_manager import ThrottleManager, quiet_hours_retry_after
from shared.utils import local_now

# Feed statuses that new-listing alerts are sent for
ALERTABLE_NEW_LISTING_STATUSES = ("Active", "Coming Soon")


def _empty_stats() -> dict[str, int]:
    return {"searches": 0, "matched": 0, "dispatched": 0, "queued": 0, "skipped": 0, "errors": 0}


class ListingEventProcessor:
    """Runs one listing event through match, throttle, and dispatch or queue."""

    def __init__(
        self,
        repository: Any,
        matcher: SearchMatcher,
        throttle: ThrottleManager,
        router: NotificationRouter,
        retry_queue: RetryQueue,
        clock: Callable[[], datetime] = local_now,
    ):
        self.repository = repository
        self.matcher = matcher
        self.throttle = throttle
        self.router = router
        self.retry_queue = retry_queue
        self.clock = clock

    def handle_raw_event(self, data: dict[str, Any]) -> dict[str, int]:
        """Validate a raw feed payload and process it; invalid payloads are logged and skipped."""
        try:
            event = ListingEvent.model_validate(data)
        except ValidationError as e:
            error_file = log_notification_error(
                error_type="ingestion",
                error_message=str(e),
                context={"payload": data},
            )
            print(f"  ⚠️  Invalid listing event skipped. Details logged to: {error_file}")
            stats = _empty_stats()
            stats["skipped"] += 1
            return stats

        return self.handle_event(event)

    def handle_event(self, event: ListingEvent) -> dict[str, int]:
        """
        Match one listing event against all instant searches and notify.

        Args:
            event: Normalized listing event

        Returns:
            Dictionary with stats: searches, matched, dispatched, queued,
            skipped, errors
        """
        stats = _empty_stats()

        try:
            skip_reason = self._skip_reason(event)
            if skip_reason:
                print(f"  - Skipping listing {event.listing_id} ({event.event_type.value}): {skip_reason}")
                stats["skipped"] += 1
                return stats

            if event.event_type == EventType.OPEN_HOUSE:
                event.listing.has_upcoming_open_house = True

            try:
                searches = self.repository.get_instant_searches()
            except Exception as e:
                error_file = log_notification_error(
                    error_type="matching",
                    error_message=f"Could not load instant searches: {e}",
                    context={"listing_id": event.listing_id, "event_type": event.event_type.value},
                )
                print(f"  ⚠️  Error loading saved searches. Details logged to: {error_file}")
                stats["errors"] += 1
                return stats

            payload = event.notification_payload()
            preferences = PreferenceContext(self.repository)

            for search in searches:
                if not search.is_instant:
                    continue
                stats["searches"] += 1
                try:
                    self._notify_search(event, search, payload, preferences, stats)
                except Exception as e:
                    error_file = log_notification_error(
                        error_type="matching",
                        error_message=str(e),
                        context={
                            "listing_id": event.listing_id,
                            "event_type": event.event_type.value,
                            "search_id": search.id,
                            "user_id": search.user_id,
                        },
                    )
                    print(f"  ⚠️  Error notifying search {search.id}. Details logged to: {error_file}")
                    stats["errors"] += 1

            return stats

        finally:
            # Every ingested event counts toward bulk-import detection, after
            # its own decisions were made
            self.throttle.register_import_event()

    def _skip_reason(self, event: ListingEvent) -> str | None:
        source = event.source
        if source.get("table") == "archive":
            return "archived listing"

        if event.event_type == EventType.NEW_LISTING:
            status = source.get("status")
            if status and status not in ALERTABLE_NEW_LISTING_STATUSES:
                return f"listing status {status}"

        if not has_significant_changes(event):
            return "no significant changes"

        return None

    def _notify_search(
        self,
        event: ListingEvent,
        search: SavedSearch,
        payload: dict[str, Any],
        preferences: PreferenceContext,
        stats: dict[str, int],
    ) -> None:
        match = self.matcher.evaluate(event, search)
        if match is None:
            return
        stats["matched"] += 1

        prefs = preferences.get(search.user_id, search.id)
        decision = self.throttle.decide(
            search.user_id, search.id, match.match_type, payload, prefs
        )
        if not decision.allowed:
            self.retry_queue.enqueue(search, payload, match.match_type, decision)
            stats["queued"] += 1
            return

        result = self.router.dispatch(
            search, payload, match.match_type, context=CallContext.DIRECT, preferences=preferences
        )
        if result.delivered:
            stats["dispatched"] += 1
            return

        if result.reason in TERMINAL_DISPATCH_REASONS:
            stats["skipped"] += 1
            return

        now = self.clock()
        window = self.throttle.quiet_window(prefs)
        if result.reason == "quiet_hours" and window:
            deferred = ThrottleDecision.blocked(
                BlockReason.QUIET_HOURS, quiet_hours_retry_after(now, window[1])
            )
        else:
            deferred = ThrottleDecision.blocked(
                BlockReason.SYSTEM, now + timedelta(minutes=RATE_LIMIT_RETRY_MINUTES)
            )
        self.retry_queue.enqueue(search, payload, match.match_type, deferred)
        stats["queued"] += 1
