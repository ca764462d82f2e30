"""Pydantic models for throttling, queuing and dispatching notifications."""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models.listing import EventType
from models.types import ListingID, ListingSnapshot, QueueItemID, SearchID, UserID
from shared.utils import parse_timestamp


class BlockReason(str, Enum):
    """Why a notification was deferred instead of sent."""

    QUIET_HOURS = "quiet_hours"
    DAILY_LIMIT = "daily_limit"
    RATE_LIMITED = "rate_limited"
    BULK_IMPORT = "bulk_import"
    SYSTEM = "system"


class QueueStatus(str, Enum):
    """Lifecycle of a queued notification."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_QUEUE_STATUSES = (QueueStatus.SENT, QueueStatus.FAILED, QueueStatus.EXPIRED)


class CallContext(str, Enum):
    """Who is asking the router to dispatch."""

    DIRECT = "direct"  # fresh match; router applies its own quiet-hours gate
    REQUEUED = "requeued"  # retry queue; throttle already re-validated quiet hours


DEFAULT_NOTIFICATION_TYPES = [
    EventType.NEW_LISTING.value,
    EventType.PRICE_DROP.value,
    EventType.BACK_ON_MARKET.value,
]


class NotificationPreferences(BaseModel):
    """Per-user (optionally per-search) notification preferences."""

    model_config = ConfigDict(extra="ignore")

    user_id: UserID | None = None
    saved_search_id: SearchID | None = None
    instant_app_notifications: bool = True
    instant_email_notifications: bool = True
    instant_sms_notifications: bool = False
    quiet_hours_enabled: bool = True
    quiet_hours_start: str = "22:00:00"
    quiet_hours_end: str = "06:00:00"
    throttling_enabled: bool = True
    max_daily_notifications: int = Field(50, ge=0)
    notification_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NOTIFICATION_TYPES)
    )

    @field_validator("user_id", "saved_search_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value) if value else None
        return value

    @field_validator("notification_types", mode="before")
    @classmethod
    def _types_json(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return json.loads(value) if value.strip() else []
        return value

    @field_validator("max_daily_notifications", mode="before")
    @classmethod
    def _default_cap(cls, value: Any) -> Any:
        return 50 if value is None else value

    def wants(self, event_type: str) -> bool:
        """Empty allow-list means every event type is wanted."""
        return not self.notification_types or event_type in self.notification_types


class ThrottleState(BaseModel):
    """Per user/search/day notification counters."""

    user_id: UserID
    saved_search_id: SearchID
    notification_date: date
    notification_count: int = Field(0, ge=0)
    throttled_count: int = Field(0, ge=0)
    last_notification_at: datetime | None = None

    @field_validator("user_id", "saved_search_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("last_notification_at", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)


class RateLimitState(BaseModel):
    """
    Last send and burst bookkeeping for one user and search.

    Kept in the store rather than in memory so the event processor and the
    scheduled queue job rate-limit against the same history.
    """

    user_id: UserID
    saved_search_id: SearchID
    last_notification_at: datetime | None = None
    burst_count: int = Field(0, ge=0)
    burst_expires_at: datetime | None = None

    @field_validator("user_id", "saved_search_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("last_notification_at", "burst_expires_at", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("burst_count", mode="before")
    @classmethod
    def _null_count(cls, value: Any) -> Any:
        return 0 if value is None else value


class ThrottleDecision(BaseModel):
    """Outcome of a throttle check: allowed, or blocked until retry_after."""

    allowed: bool
    reason: BlockReason | None = None
    retry_after: datetime | None = None

    @classmethod
    def allow(cls) -> "ThrottleDecision":
        return cls(allowed=True)

    @classmethod
    def blocked(cls, reason: BlockReason, retry_after: datetime) -> "ThrottleDecision":
        return cls(allowed=False, reason=reason, retry_after=retry_after)


class MatchResult(BaseModel):
    """A listing event that satisfied a saved search."""

    search_id: SearchID
    user_id: UserID
    listing_id: ListingID
    match_type: str
    match_score: int = 100
    decided_at: datetime


class DispatchResult(BaseModel):
    """What the router did with one notification."""

    delivered: bool
    channels_used: list[str] = Field(default_factory=list)
    reason: str | None = None
    errors: list[str] = Field(default_factory=list)


class QueueItem(BaseModel):
    """Blocked notification waiting in notification_queue."""

    id: QueueItemID | None = None
    user_id: UserID
    saved_search_id: SearchID
    listing_id: ListingID
    match_type: str
    listing_data: ListingSnapshot = Field(default_factory=dict)
    reason_blocked: BlockReason = BlockReason.SYSTEM
    retry_after: datetime
    retry_attempts: int = Field(0, ge=0)
    max_attempts: int = Field(3, ge=1)
    status: QueueStatus = QueueStatus.QUEUED
    processed_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None

    @field_validator("id", "user_id", "saved_search_id", "listing_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("listing_data", mode="before")
    @classmethod
    def _listing_json(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, str):
            return json.loads(value) if value.strip() else {}
        return value

    @field_validator("retry_after", "processed_at", "created_at", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_attempts >= self.max_attempts
