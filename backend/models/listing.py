"""Pydantic models for listing data and listing change events."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models.types import ChangeSet, ListingID, ListingSnapshot
from shared.utils import parse_timestamp

_YES_VALUES = {"Y", "YES", "TRUE", "1"}


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class EventType(str, Enum):
    """Listing lifecycle events the engine reacts to."""

    NEW_LISTING = "new_listing"
    UPDATED = "updated"
    PRICE_DROP = "price_drop"
    PRICE_INCREASE = "price_increase"
    STATUS_CHANGE = "status_change"
    BACK_ON_MARKET = "back_on_market"
    OPEN_HOUSE = "open_house"
    COMING_SOON = "coming_soon"
    PROPERTY_UPDATED = "property_updated"


# Spellings used by the listing feed for the same events
EVENT_TYPE_ALIASES = {
    "new": EventType.NEW_LISTING,
    "imported": EventType.NEW_LISTING,
    "price_reduced": EventType.PRICE_DROP,
    "price_increased": EventType.PRICE_INCREASE,
}

# Change-set keys from the feed -> canonical Listing field names
CHANGE_FIELD_ALIASES = {
    "ListPrice": "price",
    "list_price": "price",
    "StandardStatus": "status",
    "standard_status": "status",
    "BedroomsTotal": "beds",
    "bedrooms_total": "beds",
    "BathroomsTotalInteger": "baths",
    "bathrooms_total": "baths",
    "LivingArea": "sqft",
    "living_area": "sqft",
    "PropertyType": "property_type",
    "PropertySubType": "property_sub_type",
}


def _canonical_changes(changes: dict[str, Any]) -> ChangeSet:
    return {CHANGE_FIELD_ALIASES.get(key, key): value for key, value in changes.items()}


class Listing(BaseModel):
    """
    Canonical listing attributes used for matching and notification context.

    The feed delivers the same attribute under several spellings (RESO
    CamelCase and snake_case database columns). They are collapsed here, once,
    so nothing downstream branches on field names.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    listing_id: ListingID = Field(
        ..., validation_alias=_alias("listing_id", "ListingId", "ListingKey")
    )
    price: float | None = Field(None, validation_alias=_alias("price", "ListPrice", "list_price"))
    original_price: float | None = Field(
        None, validation_alias=_alias("original_price", "OriginalListPrice", "original_list_price")
    )

    # Location
    street_number: str | None = Field(None, validation_alias=_alias("street_number", "StreetNumber"))
    street_name: str | None = Field(None, validation_alias=_alias("street_name", "StreetName"))
    unit_number: str | None = Field(None, validation_alias=_alias("unit_number", "UnitNumber"))
    city: str | None = Field(None, validation_alias=_alias("city", "City"))
    postal_code: str | None = Field(None, validation_alias=_alias("postal_code", "PostalCode", "zip"))
    neighborhood: str | None = Field(
        None, validation_alias=_alias("neighborhood", "Subdivision", "subdivision")
    )
    latitude: float | None = Field(None, validation_alias=_alias("latitude", "Latitude", "lat"))
    longitude: float | None = Field(None, validation_alias=_alias("longitude", "Longitude", "lng"))

    # Structure
    property_type: str | None = Field(None, validation_alias=_alias("property_type", "PropertyType"))
    property_sub_type: str | None = Field(
        None, validation_alias=_alias("property_sub_type", "PropertySubType")
    )
    beds: int | None = Field(None, validation_alias=_alias("beds", "BedroomsTotal", "bedrooms_total"))
    baths: float | None = Field(
        None, validation_alias=_alias("baths", "BathroomsTotalInteger", "bathrooms_total")
    )
    sqft: float | None = Field(None, validation_alias=_alias("sqft", "LivingArea", "living_area"))
    year_built: int | None = Field(None, validation_alias=_alias("year_built", "YearBuilt"))
    lot_size_acres: float | None = Field(
        None, validation_alias=_alias("lot_size_acres", "LotSizeAcres")
    )
    garage_spaces: float | None = Field(
        None, validation_alias=_alias("garage_spaces", "GarageSpaces")
    )
    parking_total: float | None = Field(
        None, validation_alias=_alias("parking_total", "ParkingTotal")
    )

    # Market
    status: str | None = Field(
        None, validation_alias=_alias("status", "StandardStatus", "standard_status")
    )
    days_on_market: int | None = Field(
        None, validation_alias=_alias("days_on_market", "DaysOnMarket")
    )
    price_change_timestamp: datetime | None = Field(
        None, validation_alias=_alias("price_change_timestamp", "PriceChangeTimestamp")
    )
    modification_timestamp: datetime | None = Field(
        None, validation_alias=_alias("modification_timestamp", "ModificationTimestamp")
    )
    has_upcoming_open_house: bool | None = None

    # Amenities
    has_pool: bool = Field(False, validation_alias=_alias("has_pool", "PoolPrivateYN", "pool_private_yn"))
    has_fireplace: bool = Field(
        False, validation_alias=_alias("has_fireplace", "FireplaceYN", "fireplace_yn")
    )
    has_waterfront: bool = Field(
        False, validation_alias=_alias("has_waterfront", "WaterfrontYN", "waterfront_yn")
    )
    has_view: bool = Field(False, validation_alias=_alias("has_view", "ViewYN", "view_yn"))
    has_cooling: bool = Field(False, validation_alias=_alias("has_cooling", "CoolingYN", "cooling_yn"))
    has_spa: bool = Field(False, validation_alias=_alias("has_spa", "SpaYN", "spa_yn"))
    senior_community: bool = Field(
        False,
        validation_alias=_alias("senior_community", "SeniorCommunityYN", "senior_community_yn"),
    )
    virtual_tour_url: str | None = Field(
        None,
        validation_alias=_alias(
            "virtual_tour_url",
            "VirtualTourURLUnbranded",
            "virtual_tour_url_unbranded",
            "VirtualTourURLBranded",
            "virtual_tour_url_branded",
        ),
    )

    # Rentals
    pets_allowed: str | None = Field(None, validation_alias=_alias("pets_allowed", "PetsAllowed"))
    laundry_features: str | None = Field(
        None, validation_alias=_alias("laundry_features", "LaundryFeatures")
    )

    # Presentation context handed to channels
    photo_url: str | None = Field(
        None, validation_alias=_alias("photo_url", "PhotoURL", "main_photo_url")
    )
    url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _blank_strings_to_none(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: (None if v == "" else v) for k, v in data.items()}
        return data

    @field_validator("listing_id", mode="before")
    @classmethod
    def _listing_id_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(int(value))
        return value

    @field_validator("postal_code", "street_number", "unit_number", mode="before")
    @classmethod
    def _number_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value))
        return value

    @field_validator(
        "has_pool",
        "has_fireplace",
        "has_waterfront",
        "has_view",
        "has_cooling",
        "has_spa",
        "senior_community",
        mode="before",
    )
    @classmethod
    def _yes_no_flag(cls, value: Any) -> bool:
        if value is None:
            return False
        if isinstance(value, bool):
            return value
        return str(value).strip().upper() in _YES_VALUES

    @field_validator("pets_allowed", "laundry_features", mode="before")
    @classmethod
    def _join_list(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return " ".join(str(v) for v in value)
        return value

    @field_validator("modification_timestamp", "price_change_timestamp", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def address(self) -> str:
        street = " ".join(p for p in (self.street_number, self.street_name) if p)
        if self.unit_number:
            street = f"{street} #{self.unit_number}" if street else f"#{self.unit_number}"
        return ", ".join(p for p in (street, self.city) if p)

    def snapshot(self) -> ListingSnapshot:
        """JSON-ready copy of the listing for queue storage."""
        return self.model_dump(mode="json")


class ListingEvent(BaseModel):
    """A normalized change event from the listing feed."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    listing_id: ListingID | None = None
    event_type: EventType
    listing: Listing = Field(..., validation_alias=_alias("listing", "listing_data"))
    old_price: float | None = None
    new_price: float | None = None
    old_status: str | None = None
    new_status: str | None = None
    changes: ChangeSet = Field(default_factory=dict)
    open_house: dict[str, Any] | None = None
    modification_timestamp: datetime | None = None
    source: dict[str, Any] = Field(
        default_factory=dict, validation_alias=_alias("source", "metadata")
    )

    @field_validator("event_type", mode="before")
    @classmethod
    def _event_type_alias(cls, value: Any) -> Any:
        if isinstance(value, str):
            return EVENT_TYPE_ALIASES.get(value.strip().lower(), value.strip().lower())
        return value

    @field_validator("changes", mode="before")
    @classmethod
    def _canonical_change_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value or {}
        return _canonical_changes(value)

    @field_validator("modification_timestamp", mode="before")
    @classmethod
    def _local_timestamp(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @model_validator(mode="after")
    def _normalize(self) -> "ListingEvent":
        if self.listing_id is None:
            self.listing_id = self.listing.listing_id
        if self.modification_timestamp is None:
            self.modification_timestamp = self.listing.modification_timestamp
        if not self.changes and isinstance(self.source.get("changes"), dict):
            self.changes = _canonical_changes(self.source["changes"])
        if (
            self.event_type == EventType.STATUS_CHANGE
            and self.old_status == "Active Under Contract"
            and self.new_status == "Active"
        ):
            self.event_type = EventType.BACK_ON_MARKET
        return self

    def notification_payload(self) -> ListingSnapshot:
        """Listing snapshot plus the before/after values for this event."""
        payload = self.listing.snapshot()

        if self.old_price is not None and self.new_price is not None:
            payload["old_price"] = self.old_price
            payload["new_price"] = self.new_price
            if self.old_price > 0:
                change = self.new_price - self.old_price
                percent = round(abs(change) / self.old_price * 100, 1)
                if change < 0:
                    payload["reduction_amount"] = -change
                    payload["reduction_percent"] = percent
                elif change > 0:
                    payload["increase_amount"] = change
                    payload["increase_percent"] = percent

        if self.old_status is not None or self.new_status is not None:
            payload["old_status"] = self.old_status
            payload["new_status"] = self.new_status

        if self.open_house:
            payload["open_house"] = self.open_house

        if self.changes:
            payload["changes"] = self.changes

        return payload
