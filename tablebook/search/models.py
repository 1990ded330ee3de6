from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class Location(BaseModel):
    """One physical address of a restaurant."""

    id: str
    restaurant_id: str
    location_name: str = ""
    full_address: str = ""
    city: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    phone: str | None = None

    @property
    def coordinates(self) -> Coordinate | None:
        # Partial coordinates count as unresolved.
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinate(lat=self.latitude, lng=self.longitude)


class Restaurant(BaseModel):
    id: str
    name: str
    cuisine: str | None = None
    status: Literal["to-visit", "visited"] = "to-visit"
    address: str = ""
    locations: list[Location] = Field(default_factory=list)


class GeocodeResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    coordinates: Coordinate
    formatted_address: str
    city: str | None = None
    confidence: Literal["high", "medium", "low"] = "medium"
    place_id: str | None = None
    address_components: tuple[dict[str, Any], ...] = ()

    @property
    def display_name(self) -> str:
        """Leading segment of the formatted address, e.g. ``Borough Market``."""
        head = self.formatted_address.split(",")[0].strip()
        return head or self.formatted_address


class SearchTier(str, Enum):
    local = "local"
    proximity = "proximity"
    city = "city"


class SearchLocation(BaseModel):
    name: str
    coordinates: Coordinate | None = None
    city: str | None = None
    formatted_address: str | None = None
    matched_city: str | None = None


class SearchResult(BaseModel):
    restaurants: list[Restaurant] = Field(default_factory=list)
    tier: SearchTier
    search_location: SearchLocation | None = None
    distances_km: dict[str, float] = Field(default_factory=dict)
    tiers_tried: list[SearchTier] = Field(default_factory=list)
    message: str | None = None
    elapsed_ms: float = 0.0


class SearchRequest(BaseModel):
    query: str = Field(..., max_length=500)


class NearMeRequest(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    max_walking_minutes: float | None = Field(default=None, gt=0.0, le=240.0)
