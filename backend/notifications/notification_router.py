"""
Routing of allowed notifications to the user's enabled channels.

The router resolves preferences, applies the type allow-list (and, for
fresh matches, quiet hours), suppresses duplicates, then tries each enabled
channel independently.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from config.notification_settings import NotificationSettings, load_settings
from models.notification import CallContext, DispatchResult, NotificationPreferences
from models.search import SavedSearch
from models.types import ListingID, SearchID, UserID
from notifications.channels import ChannelSender, build_channel_context
from notifications.error_logger import log_notification_error
from notifications.throttle_manager import effective_quiet_window, is_quiet_hours
from shared.utils import local_now

# Channel name -> preference toggle that enables it
CHANNEL_PREFERENCES = {
    "app": "instant_app_notifications",
    "email": "instant_email_notifications",
    "sms": "instant_sms_notifications",
}

# Dispatch reasons that retrying can never fix
TERMINAL_DISPATCH_REASONS = {"type_disabled", "duplicate", "no_channels"}

IdempotencyKey = tuple[UserID, ListingID, SearchID, str]


def idempotency_key(
    user_id: UserID, listing_id: ListingID, search_id: SearchID, match_type: str
) -> IdempotencyKey:
    """One delivery per user, listing, search and event type, across all channels."""
    return (user_id, str(listing_id), search_id, match_type)


class PreferenceContext:
    """
    Preferences resolved once and reused for the length of one event or one
    queue batch. Create a new context per unit of work; nothing is shared
    between them.

    Lookup order: search-specific row, then the user's most recent
    user-level row, then built-in defaults.
    """

    def __init__(self, repository: Any):
        self.repository = repository
        self._cache: dict[tuple[UserID, SearchID], NotificationPreferences] = {}

    def get(self, user_id: UserID, search_id: SearchID) -> NotificationPreferences:
        key = (user_id, search_id)
        if key not in self._cache:
            self._cache[key] = self._load(user_id, search_id)
        return self._cache[key]

    def _load(self, user_id: UserID, search_id: SearchID) -> NotificationPreferences:
        row = self.repository.get_search_preferences(user_id, search_id)
        if not row:
            row = self.repository.get_user_preferences(user_id)
        if not row:
            return NotificationPreferences(user_id=user_id)

        try:
            return NotificationPreferences.model_validate(row)
        except ValidationError as e:
            log_notification_error(
                error_type="dispatch",
                error_message=f"Invalid notification preferences, using defaults: {e}",
                context={"user_id": user_id, "search_id": search_id, "row": row},
            )
            return NotificationPreferences(user_id=user_id)


class NotificationRouter:
    """Sends one allowed notification over every channel the user enabled."""

    def __init__(
        self,
        repository: Any,
        channels: dict[str, ChannelSender | None],
        settings: NotificationSettings | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.repository = repository
        self.channels = channels
        self.settings = settings or load_settings()
        self.clock = clock

    def available_channels(self, preferences: NotificationPreferences) -> list[tuple[str, ChannelSender]]:
        """
        Channels that are both enabled by the user and configured here.

        An enabled channel with no sender is treated as unavailable.
        """
        available = []
        for name, toggle in CHANNEL_PREFERENCES.items():
            if not getattr(preferences, toggle):
                continue
            sender = self.channels.get(name)
            if sender is None:
                continue
            available.append((name, sender))
        return available

    def dispatch(
        self,
        search: SavedSearch,
        payload: dict[str, Any],
        match_type: str,
        context: CallContext = CallContext.DIRECT,
        preferences: PreferenceContext | None = None,
    ) -> DispatchResult:
        """
        Deliver a notification for one matched listing.

        Args:
            search: The saved search that matched
            payload: Listing snapshot plus before/after values
            match_type: Event type that produced the match
            context: DIRECT for fresh matches, REQUEUED for retry-queue items
                (quiet hours were already re-checked by the throttle)
            preferences: Preference cache for the current event or batch

        Returns:
            DispatchResult
        """
        preferences = preferences or PreferenceContext(self.repository)
        prefs = preferences.get(search.user_id, search.id)
        listing_id = str(payload.get("listing_id", ""))

        if not prefs.wants(match_type):
            return DispatchResult(delivered=False, reason="type_disabled")

        if context == CallContext.DIRECT:
            window = effective_quiet_window(self.settings, prefs)
            if window and is_quiet_hours(self.clock().time(), *window):
                return DispatchResult(delivered=False, reason="quiet_hours")

        key = idempotency_key(search.user_id, listing_id, search.id, match_type)
        if self.repository.has_delivery(*key):
            return DispatchResult(delivered=False, reason="duplicate")

        channels = self.available_channels(prefs)
        if not channels:
            return DispatchResult(delivered=False, reason="no_channels")

        channel_context = build_channel_context(search, payload, match_type)
        channels_used = []
        errors = []

        for name, sender in channels:
            try:
                if sender.send(search.user_id, channel_context):
                    channels_used.append(name)
                else:
                    errors.append(f"{name}: not delivered")
            except Exception as e:
                errors.append(f"{name}: {e}")
                log_notification_error(
                    error_type="dispatch",
                    error_message=str(e),
                    context={
                        "channel": name,
                        "user_id": search.user_id,
                        "search_id": search.id,
                        "listing_id": listing_id,
                        "match_type": match_type,
                    },
                )

        if not channels_used:
            print(f"  ✗ No channel delivered listing {listing_id} to user {search.user_id}")
            return DispatchResult(delivered=False, reason="channel_failed", errors=errors)

        self._record_success(search, key, channels_used)
        print(
            f"  ✓ Notified user {search.user_id} about listing {listing_id} "
            f"({match_type}) via {', '.join(channels_used)}"
        )
        return DispatchResult(delivered=True, channels_used=channels_used, errors=errors)

    def _record_success(
        self, search: SavedSearch, key: IdempotencyKey, channels: list[str]
    ) -> None:
        now = self.clock()
        _user_id, listing_id, _search_id, match_type = key
        try:
            self.repository.record_delivery(*key, channels, now)
            self.repository.mark_search_notified(search.id, now)
        except Exception as e:
            # Already delivered; bookkeeping failures are reported only
            log_notification_error(
                error_type="dispatch",
                error_message=f"Delivered but could not record delivery: {e}",
                context={
                    "user_id": search.user_id,
                    "search_id": search.id,
                    "listing_id": listing_id,
                    "match_type": match_type,
                    "channels": channels,
                },
            )
