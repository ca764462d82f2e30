import os
from datetime import datetime, time
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

DEFAULT_MARKET_TIMEZONE = "America/New_York"


def market_timezone() -> ZoneInfo:
    """Timezone every listing and search timestamp is compared in."""
    return ZoneInfo(os.getenv("MARKET_TIMEZONE", DEFAULT_MARKET_TIMEZONE))


def local_now() -> datetime:
    """Current time in the market timezone."""
    return datetime.now(market_timezone())


def to_local(value: datetime) -> datetime:
    """
    Express a datetime in the market timezone.

    Naive values are assumed to already be market-local wall time, which is
    how listing feeds and the saved search table store them.
    """
    tz = market_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def parse_timestamp(value: datetime | str | None) -> datetime | None:
    """Parse a datetime or date string into a market-local datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return to_local(value)
    try:
        return to_local(date_parser.parse(str(value)))
    except (ValueError, OverflowError, TypeError):
        return None


def parse_time_of_day(value: time | str | None, default: str = "00:00") -> time:
    """Parse 'HH:MM' or 'HH:MM:SS' into a time; falls back to default."""
    if isinstance(value, time):
        return value
    for candidate in (value, default):
        if not candidate:
            continue
        try:
            return date_parser.parse(str(candidate)).time().replace(microsecond=0)
        except (ValueError, OverflowError, TypeError):
            continue
    return time(0, 0)


def print_summary(title: str, stats: dict[str, int]) -> None:
    """Print processing summary."""
    print(f"\n{'=' * 60}")
    print(f"[{local_now().isoformat(timespec='seconds')}] {title}")
    print(f"{'=' * 60}")
    for key, value in stats.items():
        print(f"{key.replace('_', ' ').capitalize() + ':':<12}{value}")
    print(f"{'=' * 60}\n")
