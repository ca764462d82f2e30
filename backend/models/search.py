"""Pydantic models for saved searches and their filter criteria."""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.types import Coordinate, SearchID, UserID
from shared.utils import parse_timestamp


class NotificationFrequency(str, Enum):
    """How often a saved search is evaluated for alerts."""

    INSTANT = "instant"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


# Canonical list filter -> spellings found in stored search JSON
LIST_FILTER_ALIASES: dict[str, tuple[str, ...]] = {
    "cities": ("cities", "selected_cities", "keyword_City", "City"),
    "zip_codes": ("zip_codes", "keyword_PostalCode", "PostalCode"),
    "neighborhoods": ("neighborhoods", "selected_neighborhoods", "keyword_Neighborhood"),
    "property_types": ("property_types", "PropertyType"),
    "property_sub_types": ("property_sub_types", "PropertySubType"),
    "statuses": ("statuses", "status"),
    "laundry_features": ("laundry_features",),
}

# Canonical amenity flag -> spellings found in stored search JSON
FLAG_FILTER_ALIASES: dict[str, tuple[str, ...]] = {
    "has_pool": ("has_pool", "PoolPrivateYN"),
    "has_fireplace": ("has_fireplace", "FireplaceYN"),
    "has_waterfront": ("has_waterfront", "WaterfrontYN"),
    "has_view": ("has_view", "ViewYN"),
    "has_cooling": ("has_cooling", "CoolingYN"),
    "has_spa": ("has_spa", "SpaYN"),
    "senior_community": ("senior_community", "SeniorCommunityYN"),
}

_FALSE_STRINGS = {"", "0", "N", "NO", "FALSE", "OFF"}


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().upper() not in _FALSE_STRINGS
    return bool(value)


def _as_list(value: Any) -> list[Any]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v not in (None, "")]
    return [value]


def _load_json(value: Any) -> Any:
    if isinstance(value, (str, bytes)):
        text = value.strip() if isinstance(value, str) else value.decode().strip()
        if not text:
            return None
        return json.loads(text)
    return value


class SearchFilters(BaseModel):
    """
    Structured criteria of a saved search.

    Every criterion is optional; an absent criterion never excludes a listing.
    """

    model_config = ConfigDict(extra="ignore")

    price_min: float | None = None
    price_max: float | None = None

    cities: list[str] = Field(default_factory=list)
    zip_codes: list[str] = Field(default_factory=list)
    neighborhoods: list[str] = Field(default_factory=list)

    property_types: list[str] = Field(default_factory=list)
    property_sub_types: list[str] = Field(default_factory=list)

    beds_min: float | None = None
    beds: list[int] = Field(default_factory=list)
    baths_min: float | None = None
    sqft_min: float | None = None
    sqft_max: float | None = None
    year_built_min: int | None = None
    year_built_max: int | None = None

    statuses: list[str] = Field(default_factory=list)

    # Schools
    school_grade: str | None = None
    school_district_id: str | None = None
    near_a_elementary: bool = False
    near_ab_elementary: bool = False
    near_a_middle: bool = False
    near_ab_middle: bool = False
    near_a_high: bool = False
    near_ab_high: bool = False
    near_top_elementary: bool = False
    near_top_high: bool = False

    lot_size_min: float | None = None
    lot_size_max: float | None = None
    garage_spaces_min: float | None = None
    parking_total_min: float | None = None

    # Amenities
    has_pool: bool = False
    has_fireplace: bool = False
    has_waterfront: bool = False
    has_view: bool = False
    has_cooling: bool = False
    has_spa: bool = False
    has_virtual_tour: bool = False
    senior_community: bool = False

    # Rentals
    pets_dogs: bool = False
    pets_cats: bool = False
    pets_none: bool = False
    pets_negotiable: bool = False
    laundry_features: list[str] = Field(default_factory=list)

    # Special
    exclusive_only: bool = False
    price_reduced: bool = False
    min_dom: int | None = None
    max_dom: int | None = None
    open_house_only: bool = False

    @model_validator(mode="before")
    @classmethod
    def _collapse_aliases(cls, data: Any) -> Any:
        data = _load_json(data)
        if data is None:
            return {}
        if not isinstance(data, dict):
            return data

        normalized = {k: v for k, v in data.items() if v != ""}

        for field, aliases in LIST_FILTER_ALIASES.items():
            merged: list[Any] = []
            for alias in aliases:
                for value in _as_list(normalized.pop(alias, None)):
                    if str(value) not in merged:
                        merged.append(str(value))
            normalized[field] = merged

        for field, aliases in FLAG_FILTER_ALIASES.items():
            normalized[field] = any(_truthy(normalized.pop(alias, None)) for alias in aliases)

        normalized["beds"] = _as_list(normalized.get("beds"))

        if "school_district_id" in normalized and normalized["school_district_id"] is not None:
            normalized["school_district_id"] = str(normalized["school_district_id"])

        return normalized

    @field_validator(
        "near_a_elementary",
        "near_ab_elementary",
        "near_a_middle",
        "near_ab_middle",
        "near_a_high",
        "near_ab_high",
        "near_top_elementary",
        "near_top_high",
        "has_virtual_tour",
        "pets_dogs",
        "pets_cats",
        "pets_none",
        "pets_negotiable",
        "exclusive_only",
        "price_reduced",
        "open_house_only",
        mode="before",
    )
    @classmethod
    def _flag(cls, value: Any) -> bool:
        return _truthy(value)

    def is_empty(self) -> bool:
        """True when no criterion is set."""
        return not self.model_dump(exclude_defaults=True)


class Polygon(BaseModel):
    """A geofence drawn on the search map, as (lat, lng) vertices."""

    coordinates: list[Coordinate] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_shapes(cls, data: Any) -> Any:
        if isinstance(data, dict):
            points = data.get("coordinates") or data.get("points") or []
        else:
            points = data or []

        coordinates = []
        for point in points:
            if isinstance(point, dict):
                coordinates.append((point.get("lat", 0), point.get("lng", 0)))
            else:
                coordinates.append((point[0], point[1]))
        return {"coordinates": coordinates}


class SavedSearch(BaseModel):
    """A user's saved search as stored in saved_searches."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: SearchID
    user_id: UserID
    name: str = ""
    filters: SearchFilters = Field(default_factory=SearchFilters)
    polygon_shapes: list[Polygon] = Field(default_factory=list)
    notification_frequency: NotificationFrequency = NotificationFrequency.INSTANT
    is_active: bool = True
    created_at: datetime | None = None
    last_notified_at: datetime | None = None

    @field_validator("id", "user_id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("filters", mode="before")
    @classmethod
    def _filters_json(cls, value: Any) -> Any:
        value = _load_json(value)
        return {} if value is None else value

    @field_validator("polygon_shapes", mode="before")
    @classmethod
    def _polygons_json(cls, value: Any) -> Any:
        value = _load_json(value)
        return [] if value is None else value

    @field_validator("created_at", "last_notified_at", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def is_instant(self) -> bool:
        return self.is_active and self.notification_frequency == NotificationFrequency.INSTANT

    @property
    def has_criteria(self) -> bool:
        return bool(self.polygon_shapes) or not self.filters.is_empty()
