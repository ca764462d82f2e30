"""
Instant listing notification system.

This module handles:
- Matching listing change events against users' instant saved searches
- Throttling (quiet hours, daily caps, rate limits, bulk imports)
- Routing allowed notifications to email and other channels
- Queuing blocked notifications and retrying them with backoff
"""

from .listing_event_processor import ListingEventProcessor
from .notification_router import NotificationRouter, PreferenceContext
from .retry_queue import QueueProcessor, RetryQueue
from .search_matcher import SearchMatcher
from .service import build_service
from .throttle_manager import ThrottleManager

__all__ = [
    'ListingEventProcessor',
    'NotificationRouter',
    'PreferenceContext',
    'QueueProcessor',
    'RetryQueue',
    'SearchMatcher',
    'ThrottleManager',
    'build_service',
]
