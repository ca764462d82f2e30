"""
Search matching logic for instant listing notifications.

Matches listing change events against users' saved searches. Every filter
check is AND-ed together and the chain stops at the first failing check;
within a list filter (cities, zip codes, ...) any value matches.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any, Protocol

from models.listing import EventType, Listing, ListingEvent
from models.notification import MatchResult
from models.search import SavedSearch, SearchFilters
from models.types import Coordinate
from notifications.error_logger import log_notification_error
from shared.utils import local_now, to_local

# Listings in these statuses are alertable when a search names no status
DEFAULT_ALERT_STATUSES = {"active", "coming soon"}

# Listing ids below this come from the brokerage's own exclusive feed
EXCLUSIVE_LISTING_ID_LIMIT = 1_000_000

RENTAL_PROPERTY_TYPE = "residential lease"

# Change-set fields that make an `updated` / `property_updated` event worth an alert
SIGNIFICANT_UPDATE_FIELDS = {"price", "status", "beds", "baths"}
SIGNIFICANT_PROPERTY_FIELDS = {"beds", "baths", "sqft", "property_type", "property_sub_type"}

GRADE_ORDER = {
    "A+": 12, "A": 11, "A-": 10,
    "B+": 9, "B": 8, "B-": 7,
    "C+": 6, "C": 5, "C-": 4,
    "D+": 3, "D": 2, "D-": 1,
    "F": 0,
}

# filter flag -> (school level, radius in miles, minimum grade)
SCHOOL_PROXIMITY_FILTERS = {
    "near_a_elementary": ("elementary", 1.0, "A-"),
    "near_ab_elementary": ("elementary", 1.0, "B-"),
    "near_a_middle": ("middle", 1.0, "A-"),
    "near_ab_middle": ("middle", 1.0, "B-"),
    "near_a_high": ("high", 1.0, "A-"),
    "near_ab_high": ("high", 1.0, "B-"),
    "near_top_elementary": ("elementary", 2.0, "A"),
    "near_top_high": ("high", 3.0, "A"),
}

AMENITY_FILTERS = (
    "has_pool",
    "has_fireplace",
    "has_waterfront",
    "has_view",
    "has_cooling",
    "has_spa",
    "senior_community",
)

# Order matters: cheap, selective checks first
PREDICATE_ORDER = (
    "price_range",
    "location",
    "property_type",
    "beds_baths",
    "square_footage",
    "year_built",
    "polygons",
    "status",
    "schools",
    "lot_size",
    "parking",
    "amenities",
    "rental_filters",
    "special_filters",
)


class SchoolsProvider(Protocol):
    """School ratings lookup used by the school filters."""

    def get_district_grade_for_city(self, city: str) -> dict[str, Any] | None: ...

    def get_district_for_point(self, lat: float, lng: float) -> dict[str, Any] | None: ...

    def property_near_top_school(
        self, lat: float, lng: float, level: str, radius_miles: float, min_grade: str
    ) -> bool: ...


def grade_meets_minimum(grade: str | None, min_grade: str) -> bool:
    """
    Compare letter grades (A+ best, F worst).

    A single-letter minimum includes its minus variant, so "B" accepts B-.
    """
    min_grade = min_grade.strip().upper()
    if len(min_grade) == 1 and min_grade != "F":
        min_grade = f"{min_grade}-"
    grade_value = GRADE_ORDER.get((grade or "").strip().upper(), 0)
    return grade_value >= GRADE_ORDER.get(min_grade, 0)


def point_in_polygon(lat: float, lng: float, polygon: list[Coordinate]) -> bool:
    """Even-odd ray casting test for a (lat, lng) point."""
    inside = False
    count = len(polygon)
    if count < 3:
        return False

    j = count - 1
    for i in range(count):
        lat_i, lng_i = polygon[i]
        lat_j, lng_j = polygon[j]
        if (lng_i > lng) != (lng_j > lng):
            crossing = (lat_j - lat_i) * (lng - lng_i) / (lng_j - lng_i) + lat_i
            if lat < crossing:
                inside = not inside
        j = i

    return inside


def is_fresh_for_search(search: SavedSearch, listing_timestamp: datetime | None) -> bool:
    """
    A search only hears about listings modified after it was created.

    Both timestamps are compared in the market timezone.
    """
    if search.created_at is None or listing_timestamp is None:
        return True
    return to_local(search.created_at) <= to_local(listing_timestamp)


def has_significant_changes(event: ListingEvent) -> bool:
    """Whether a generic update event carries changes users care about."""
    if event.event_type == EventType.UPDATED:
        return bool(SIGNIFICANT_UPDATE_FIELDS & set(event.changes))
    if event.event_type == EventType.PROPERTY_UPDATED:
        return bool(SIGNIFICANT_PROPERTY_FIELDS & set(event.changes))
    return True


def _number(value: float | int | None) -> float:
    return 0 if value is None else value


def _folded(values: list[str]) -> set[str]:
    return {v.casefold() for v in values}


class SearchMatcher:
    """
    Decides whether a listing satisfies a saved search.

    Pure apart from the optional schools lookup; safe to share between threads.
    """

    def __init__(
        self,
        schools: SchoolsProvider | None = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.schools = schools
        self.clock = clock

    def evaluate(self, event: ListingEvent, search: SavedSearch) -> MatchResult | None:
        """
        Match an event against one search.

        Returns a MatchResult, or None when the search is too new for the
        listing change or any filter rejects the listing.
        """
        if not is_fresh_for_search(search, event.modification_timestamp):
            return None

        if not self.matches(event.listing, search):
            return None

        return MatchResult(
            search_id=search.id,
            user_id=search.user_id,
            listing_id=event.listing_id or event.listing.listing_id,
            match_type=event.event_type.value,
            decided_at=self.clock(),
        )

    def matches(self, listing: Listing, search: SavedSearch) -> bool:
        """Run every filter check; stop at the first failure."""
        for name in PREDICATE_ORDER:
            check = getattr(self, f"_matches_{name}")
            if not check(listing, search):
                return False
        return True

    def _matches_price_range(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        price = _number(listing.price)
        if filters.price_min is not None and price < filters.price_min:
            return False
        if filters.price_max is not None and price > filters.price_max:
            return False
        return True

    def _matches_location(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters

        if filters.cities and (listing.city or "").casefold() not in _folded(filters.cities):
            return False

        if filters.zip_codes and (listing.postal_code or "") not in filters.zip_codes:
            return False

        if filters.neighborhoods and (
            (listing.neighborhood or "").casefold() not in _folded(filters.neighborhoods)
        ):
            return False

        return True

    def _matches_property_type(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        if filters.property_types and listing.property_type not in filters.property_types:
            return False
        if (
            filters.property_sub_types
            and listing.property_sub_type not in filters.property_sub_types
        ):
            return False
        return True

    def _matches_beds_baths(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        beds = _number(listing.beds)
        baths = _number(listing.baths)

        if filters.beds_min is not None and beds < filters.beds_min:
            return False
        if filters.beds and beds not in filters.beds:
            return False
        if filters.baths_min is not None and baths < filters.baths_min:
            return False
        return True

    def _matches_square_footage(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        sqft = _number(listing.sqft)
        if filters.sqft_min is not None and sqft < filters.sqft_min:
            return False
        if filters.sqft_max is not None and sqft > filters.sqft_max:
            return False
        return True

    def _matches_year_built(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        year_built = _number(listing.year_built)
        if filters.year_built_min is not None and year_built < filters.year_built_min:
            return False
        if filters.year_built_max is not None and year_built > filters.year_built_max:
            return False
        return True

    def _matches_polygons(self, listing: Listing, search: SavedSearch) -> bool:
        if not search.polygon_shapes:
            return True

        # Without coordinates the listing cannot be placed inside any shape
        if listing.latitude is None or listing.longitude is None:
            return False

        return any(
            point_in_polygon(listing.latitude, listing.longitude, shape.coordinates)
            for shape in search.polygon_shapes
        )

    def _matches_status(self, listing: Listing, search: SavedSearch) -> bool:
        status = (listing.status or "").casefold()
        if not status:
            return False

        if not search.filters.statuses:
            return status in DEFAULT_ALERT_STATUSES
        return status in _folded(search.filters.statuses)

    def _matches_schools(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        proximity = [
            criterion
            for flag, criterion in SCHOOL_PROXIMITY_FILTERS.items()
            if getattr(filters, flag)
        ]
        if not (filters.school_grade or filters.school_district_id or proximity):
            return True

        if self.schools is None:
            return True

        try:
            return self._school_criteria_hold(self.schools, listing, filters, proximity)
        except Exception as e:
            log_notification_error(
                error_type="matching",
                error_message=f"Schools lookup failed, school filters bypassed: {e}",
                context={"listing_id": listing.listing_id},
            )
            return True

    def _school_criteria_hold(
        self,
        schools: SchoolsProvider,
        listing: Listing,
        filters: SearchFilters,
        proximity: list[tuple[str, float, str]],
    ) -> bool:
        if filters.school_grade:
            if not listing.city:
                return False
            district = schools.get_district_grade_for_city(listing.city)
            if not district or not district.get("grade"):
                return False
            if not grade_meets_minimum(district["grade"], filters.school_grade):
                return False

        lat, lng = listing.latitude, listing.longitude
        has_point = bool(lat) and bool(lng)

        if filters.school_district_id:
            if not has_point:
                return False
            district = schools.get_district_for_point(lat, lng)
            if not district or str(district.get("id")) != filters.school_district_id:
                return False

        for level, radius_miles, min_grade in proximity:
            if not has_point:
                return False
            if not schools.property_near_top_school(lat, lng, level, radius_miles, min_grade):
                return False

        return True

    def _matches_lot_size(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        if not (filters.lot_size_min or filters.lot_size_max):
            return True

        # Lot size is often missing for condos; don't exclude them
        if listing.lot_size_acres is None:
            return True

        if filters.lot_size_min and listing.lot_size_acres < filters.lot_size_min:
            return False
        if filters.lot_size_max and listing.lot_size_acres > filters.lot_size_max:
            return False
        return True

    def _matches_parking(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        if filters.garage_spaces_min and _number(listing.garage_spaces) < filters.garage_spaces_min:
            return False
        if filters.parking_total_min and _number(listing.parking_total) < filters.parking_total_min:
            return False
        return True

    def _matches_amenities(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters
        for amenity in AMENITY_FILTERS:
            if getattr(filters, amenity) and not getattr(listing, amenity):
                return False
        if filters.has_virtual_tour and not listing.virtual_tour_url:
            return False
        return True

    def _matches_rental_filters(self, listing: Listing, search: SavedSearch) -> bool:
        if (listing.property_type or "").casefold() != RENTAL_PROPERTY_TYPE:
            return True

        filters = search.filters
        pets = (listing.pets_allowed or "").casefold()

        if filters.pets_dogs and not ("yes" in pets or "dog" in pets):
            return False
        if filters.pets_cats and not ("yes" in pets or "cat" in pets):
            return False
        if filters.pets_none and pets and "no" not in pets:
            return False
        if filters.pets_negotiable and not ("negotiable" in pets or "conditional" in pets):
            return False

        if filters.laundry_features:
            laundry = (listing.laundry_features or "").casefold()
            for feature in filters.laundry_features:
                if feature.casefold() not in laundry:
                    return False

        return True

    def _matches_special_filters(self, listing: Listing, search: SavedSearch) -> bool:
        filters = search.filters

        if filters.exclusive_only:
            listing_id = str(listing.listing_id)
            if not listing_id.isdigit() or int(listing_id) >= EXCLUSIVE_LISTING_ID_LIMIT:
                return False

        if filters.price_reduced:
            current = _number(listing.price)
            original = _number(listing.original_price)
            if original > 0 and current > 0 and current >= original:
                return False
            if listing.price_change_timestamp is None and original <= 0:
                return False

        if listing.days_on_market is not None:
            if filters.min_dom is not None and listing.days_on_market < filters.min_dom:
                return False
            if filters.max_dom is not None and listing.days_on_market > filters.max_dom:
                return False

        if filters.open_house_only and not listing.has_upcoming_open_house:
            return False

        return True
