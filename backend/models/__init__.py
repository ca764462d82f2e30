"""Pydantic models for data validation and type checking."""

from models.listing import EventType, Listing, ListingEvent
from models.notification import (
    BlockReason,
    CallContext,
    DispatchResult,
    MatchResult,
    NotificationPreferences,
    QueueItem,
    QueueStatus,
    RateLimitState,
    ThrottleDecision,
    ThrottleState,
)
from models.search import NotificationFrequency, Polygon, SavedSearch, SearchFilters

__all__ = [
    "EventType",
    "Listing",
    "ListingEvent",
    "NotificationFrequency",
    "Polygon",
    "SavedSearch",
    "SearchFilters",
    "BlockReason",
    "CallContext",
    "DispatchResult",
    "MatchResult",
    "NotificationPreferences",
    "QueueItem",
    "QueueStatus",
    "RateLimitState",
    "ThrottleDecision",
    "ThrottleState",
]
