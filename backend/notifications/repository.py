"""
Supabase-backed storage for instant notifications.

Tables: saved_searches, notification_preferences, notification_throttle,
notification_rate_state, notification_bulk_import_state,
notification_deliveries, notification_queue, user_profiles. Counter
increments go through the RPC functions defined in
database/instant_notifications.sql so they are a single atomic upsert.

Query errors propagate to the caller; rows that fail validation are logged
and skipped.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from models.notification import (
    TERMINAL_QUEUE_STATUSES,
    QueueItem,
    QueueStatus,
    RateLimitState,
    ThrottleState,
)
from models.search import SavedSearch
from models.types import ListingID, QueueItemID, SearchID, UserID
from notifications.error_logger import log_notification_error
from shared.db import get_supabase_client
from shared.utils import parse_timestamp


def _iso(value: datetime | date) -> str:
    return value.isoformat()


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    serialized = {}
    for key, value in fields.items():
        if isinstance(value, (datetime, date)):
            value = _iso(value)
        elif isinstance(value, Enum):
            value = value.value
        serialized[key] = value
    return serialized


class NotificationRepository:
    """All reads and writes the notification engine needs."""

    def __init__(self, client: Any = None):
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    # Saved searches

    def get_instant_searches(self) -> list[SavedSearch]:
        """Active saved searches with instant notification frequency."""
        response = (
            self.client.table("saved_searches")
            .select("*")
            .eq("notification_frequency", "instant")
            .eq("is_active", True)
            .execute()
        )
        return self._parse_searches(response.data or [])

    def get_searches_by_ids(self, search_ids: list[SearchID]) -> dict[SearchID, SavedSearch]:
        """Still-active searches among the given ids, keyed by id."""
        if not search_ids:
            return {}
        response = (
            self.client.table("saved_searches")
            .select("*")
            .in_("id", list(search_ids))
            .eq("is_active", True)
            .execute()
        )
        return {s.id: s for s in self._parse_searches(response.data or [])}

    def mark_search_notified(self, search_id: SearchID, notified_at: datetime) -> None:
        self.client.table("saved_searches").update(
            {"last_notified_at": _iso(notified_at)}
        ).eq("id", search_id).execute()

    def _parse_searches(self, rows: list[dict[str, Any]]) -> list[SavedSearch]:
        searches = []
        for row in rows:
            try:
                searches.append(SavedSearch.model_validate(row))
            except ValidationError as e:
                log_notification_error(
                    error_type="matching",
                    error_message=f"Skipping invalid saved search: {e}",
                    context={"search_id": row.get("id"), "user_id": row.get("user_id")},
                )
        return searches

    # Preferences

    def get_search_preferences(self, user_id: UserID, search_id: SearchID) -> dict[str, Any] | None:
        response = (
            self.client.table("notification_preferences")
            .select("*")
            .eq("user_id", user_id)
            .eq("saved_search_id", search_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def get_user_preferences(self, user_id: UserID) -> dict[str, Any] | None:
        """Most recently updated user-level (not search-specific) preferences."""
        response = (
            self.client.table("notification_preferences")
            .select("*")
            .eq("user_id", user_id)
            .is_("saved_search_id", "null")
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    def get_user_email(self, user_id: UserID) -> str | None:
        response = (
            self.client.table("user_profiles")
            .select("email")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        return response.data[0].get("email") if response.data else None

    # Throttle counters

    def get_throttle_count(self, user_id: UserID, search_id: SearchID, day: date) -> int:
        response = (
            self.client.table("notification_throttle")
            .select("notification_count")
            .eq("user_id", user_id)
            .eq("saved_search_id", search_id)
            .eq("notification_date", _iso(day))
            .limit(1)
            .execute()
        )
        if not response.data:
            return 0
        return int(response.data[0].get("notification_count") or 0)

    def increment_notification_count(
        self, user_id: UserID, search_id: SearchID, day: date, notified_at: datetime
    ) -> int:
        """Atomically add one send to today's counter; returns the new count."""
        response = self.client.rpc(
            "increment_notification_count",
            {
                "p_user_id": user_id,
                "p_saved_search_id": search_id,
                "p_notification_date": _iso(day),
                "p_notified_at": _iso(notified_at),
            },
        ).execute()
        return int(response.data or 0)

    def increment_throttled_count(self, user_id: UserID, search_id: SearchID, day: date) -> int:
        response = self.client.rpc(
            "increment_throttled_count",
            {
                "p_user_id": user_id,
                "p_saved_search_id": search_id,
                "p_notification_date": _iso(day),
            },
        ).execute()
        return int(response.data or 0)

    def reset_throttle_counts(
        self, day: date, user_id: UserID | None = None, search_id: SearchID | None = None
    ) -> int:
        query = (
            self.client.table("notification_throttle")
            .update({"notification_count": 0, "throttled_count": 0})
            .eq("notification_date", _iso(day))
        )
        if user_id is not None:
            query = query.eq("user_id", user_id)
        if search_id is not None:
            query = query.eq("saved_search_id", search_id)
        response = query.execute()
        return len(response.data or [])

    def get_throttle_rows(self, day: date, user_id: UserID | None = None) -> list[ThrottleState]:
        query = (
            self.client.table("notification_throttle")
            .select("*")
            .eq("notification_date", _iso(day))
        )
        if user_id is not None:
            query = query.eq("user_id", user_id)
        response = query.execute()
        return [ThrottleState.model_validate(row) for row in response.data or []]

    # Rate limit and bulk import state

    def get_rate_state(self, user_id: UserID, search_id: SearchID) -> RateLimitState | None:
        response = (
            self.client.table("notification_rate_state")
            .select("*")
            .eq("user_id", user_id)
            .eq("saved_search_id", search_id)
            .limit(1)
            .execute()
        )
        return RateLimitState.model_validate(response.data[0]) if response.data else None

    def save_burst_state(
        self,
        user_id: UserID,
        search_id: SearchID,
        burst_count: int,
        burst_expires_at: datetime | None,
    ) -> None:
        """Upsert the burst columns only; last_notification_at is owned by the RPC."""
        self.client.table("notification_rate_state").upsert(
            {
                "user_id": user_id,
                "saved_search_id": search_id,
                "burst_count": burst_count,
                "burst_expires_at": _iso(burst_expires_at) if burst_expires_at else None,
            },
            on_conflict="user_id,saved_search_id",
        ).execute()

    def clear_rate_state(
        self, user_id: UserID | None = None, search_id: SearchID | None = None
    ) -> int:
        query = self.client.table("notification_rate_state").delete()
        if user_id is None:
            query = query.not_.is_("user_id", "null")
        else:
            query = query.eq("user_id", user_id)
            if search_id is not None:
                query = query.eq("saved_search_id", search_id)
        response = query.execute()
        return len(response.data or [])

    def get_bulk_import_until(self) -> datetime | None:
        response = (
            self.client.table("notification_bulk_import_state")
            .select("batch_mode_until")
            .eq("id", 1)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return parse_timestamp(response.data[0].get("batch_mode_until"))

    def set_bulk_import_until(self, until: datetime, event_count: int, detected_at: datetime) -> None:
        self.client.table("notification_bulk_import_state").upsert(
            {
                "id": 1,
                "batch_mode_until": _iso(until),
                "event_count": event_count,
                "detected_at": _iso(detected_at),
            },
            on_conflict="id",
        ).execute()

    # Deliveries

    def has_delivery(
        self, user_id: UserID, listing_id: ListingID, search_id: SearchID, match_type: str
    ) -> bool:
        response = (
            self.client.table("notification_deliveries")
            .select("id")
            .eq("user_id", user_id)
            .eq("listing_id", str(listing_id))
            .eq("saved_search_id", search_id)
            .eq("match_type", match_type)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def record_delivery(
        self,
        user_id: UserID,
        listing_id: ListingID,
        search_id: SearchID,
        match_type: str,
        channels: list[str],
        delivered_at: datetime,
    ) -> bool:
        """
        Record a successful delivery.

        Returns False if the same delivery was already recorded (unique
        constraint on user, listing, search and match type).
        """
        try:
            self.client.table("notification_deliveries").insert(
                {
                    "user_id": user_id,
                    "listing_id": str(listing_id),
                    "saved_search_id": search_id,
                    "match_type": match_type,
                    "channels": channels,
                    "match_score": 100,
                    "delivered_at": _iso(delivered_at),
                },
                returning="minimal",
            ).execute()
            return True
        except Exception as e:
            error_str = str(e).lower()
            if "duplicate" in error_str or "unique" in error_str:
                return False
            raise

    # Retry queue

    def insert_queue_item(self, item: QueueItem) -> QueueItem:
        row = item.model_dump(mode="json", exclude={"id"}, exclude_none=True)
        response = self.client.table("notification_queue").insert(row).execute()
        return QueueItem.model_validate(response.data[0]) if response.data else item

    def get_queue_item(self, item_id: QueueItemID) -> QueueItem | None:
        response = (
            self.client.table("notification_queue")
            .select("*")
            .eq("id", item_id)
            .limit(1)
            .execute()
        )
        return QueueItem.model_validate(response.data[0]) if response.data else None

    def get_ready_queue_items(self, now: datetime, limit: int) -> list[QueueItem]:
        """Queued items whose retry time has passed, oldest retry first."""
        response = (
            self.client.table("notification_queue")
            .select("*")
            .eq("status", QueueStatus.QUEUED.value)
            .lte("retry_after", _iso(now))
            .order("retry_after", desc=False)
            .limit(limit)
            .execute()
        )
        items = []
        for row in response.data or []:
            try:
                item = QueueItem.model_validate(row)
            except ValidationError as e:
                log_notification_error(
                    error_type="queue_processing",
                    error_message=f"Skipping invalid queue row: {e}",
                    context={"queue_id": row.get("id")},
                )
                continue
            if not item.retries_exhausted:
                items.append(item)
        return items

    def claim_queue_item(self, item_id: QueueItemID, claimed_at: datetime) -> bool:
        """
        Move one item from queued to processing.

        The status condition makes the claim atomic: when two processors race,
        only one update matches a row.
        """
        response = (
            self.client.table("notification_queue")
            .update({"status": QueueStatus.PROCESSING.value, "processed_at": _iso(claimed_at)})
            .eq("id", item_id)
            .eq("status", QueueStatus.QUEUED.value)
            .execute()
        )
        return bool(response.data)

    def update_queue_item(self, item_id: QueueItemID, fields: dict[str, Any]) -> None:
        self.client.table("notification_queue").update(_serialize(fields)).eq(
            "id", item_id
        ).execute()

    def expire_queue_items(self, created_before: datetime, expired_at: datetime) -> int:
        response = (
            self.client.table("notification_queue")
            .update({"status": QueueStatus.EXPIRED.value, "processed_at": _iso(expired_at)})
            .in_("status", [QueueStatus.QUEUED.value, QueueStatus.PROCESSING.value])
            .lt("created_at", _iso(created_before))
            .execute()
        )
        return len(response.data or [])

    def purge_queue_items(self, created_before: datetime) -> int:
        response = (
            self.client.table("notification_queue")
            .delete()
            .in_("status", [s.value for s in TERMINAL_QUEUE_STATUSES])
            .lt("created_at", _iso(created_before))
            .execute()
        )
        return len(response.data or [])

    def delete_queue_item(self, item_id: QueueItemID) -> bool:
        response = self.client.table("notification_queue").delete().eq("id", item_id).execute()
        return bool(response.data)

    def clear_failed_queue_items(self) -> int:
        response = (
            self.client.table("notification_queue")
            .delete()
            .eq("status", QueueStatus.FAILED.value)
            .execute()
        )
        return len(response.data or [])

    def get_queue_rows(self, created_since: datetime) -> list[dict[str, Any]]:
        response = (
            self.client.table("notification_queue")
            .select("status, reason_blocked, processed_at")
            .gte("created_at", _iso(created_since))
            .execute()
        )
        return response.data or []
