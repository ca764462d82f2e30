"""
Wiring for the instant notification engine.

Builds one repository, throttle manager, router and queue from settings.
The event processor and the scheduled queue job usually run in separate
processes; they agree on throttling because counters, rate-limit state and
bulk-import batch mode all live in the store.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from config.notification_settings import NotificationSettings, load_settings
from notifications.channels import ChannelSender, EmailChannelSender
from notifications.listing_event_processor import ListingEventProcessor
from notifications.notification_router import NotificationRouter
from notifications.repository import NotificationRepository
from notifications.retry_queue import QueueProcessor, RetryQueue
from notifications.search_matcher import SchoolsProvider, SearchMatcher
from notifications.throttle_manager import ThrottleManager
from shared.utils import local_now


@dataclass
class NotificationService:
    repository: Any
    settings: NotificationSettings
    matcher: SearchMatcher
    throttle: ThrottleManager
    router: NotificationRouter
    retry_queue: RetryQueue
    queue_processor: QueueProcessor
    event_processor: ListingEventProcessor


def build_service(
    repository: Any = None,
    settings: NotificationSettings | None = None,
    schools: SchoolsProvider | None = None,
    channels: dict[str, ChannelSender | None] | None = None,
    clock: Callable[[], datetime] = local_now,
) -> NotificationService:
    """
    Assemble the engine.

    Args:
        repository: Store to use; defaults to the Supabase repository
        settings: Defaults to load_settings()
        schools: Optional school ratings lookup for school filters
        channels: Channel senders by name ("app", "email", "sms"); by default
            only email is configured
        clock: Market-local "now", shared by every component

    Returns:
        NotificationService
    """
    repository = repository or NotificationRepository()
    settings = settings or load_settings()
    if channels is None:
        channels = {"app": None, "email": EmailChannelSender(repository), "sms": None}

    matcher = SearchMatcher(schools=schools, clock=clock)
    throttle = ThrottleManager(repository, settings, clock=clock)
    router = NotificationRouter(repository, channels, settings, clock=clock)
    retry_queue = RetryQueue(repository, clock=clock)
    queue_processor = QueueProcessor(repository, throttle, router, settings, clock=clock)
    event_processor = ListingEventProcessor(
        repository, matcher, throttle, router, retry_queue, clock=clock
    )

    return NotificationService(
        repository=repository,
        settings=settings,
        matcher=matcher,
        throttle=throttle,
        router=router,
        retry_queue=retry_queue,
        queue_processor=queue_processor,
        event_processor=event_processor,
    )
