from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from tablebook.search.config import GeocoderConfig, SearchConfig
from tablebook.search.geocoding import GeocodingClient
from tablebook.search.location_index import LocationIndex
from tablebook.storage.repository import CsvRestaurantStore

GOOGLE_CONFIG = GeocoderConfig(provider="google", api_key="test-key")

RESTAURANTS = [
    {"id": "r1", "name": "Peckham Cellars", "cuisine": "Wine Bar", "status": "to-visit",
     "address": "125 Queen's Road, Peckham"},
    {"id": "r2", "name": "Padella", "cuisine": "Italian", "status": "visited",
     "address": "6 Southwark Street"},
    {"id": "r3", "name": "Bao", "cuisine": "Taiwanese", "status": "to-visit",
     "address": "Stoney Street and Marylebone"},
    {"id": "r4", "name": "Dishoom", "cuisine": "Indian", "status": "visited",
     "address": "Shoreditch and Covent Garden"},
    {"id": "r5", "name": "Cal Pep", "cuisine": "Catalan", "status": "to-visit",
     "address": "Plaça de les Olles 8"},
    {"id": "r6", "name": "Kiln", "cuisine": "Thai", "status": "must-visit",
     "address": "58 Brewer Street"},
]

LOCATIONS = [
    {"id": "l1", "restaurant_id": "r1", "location_name": "Peckham",
     "full_address": "125 Queen's Road, London SE15 2ND", "city": "London",
     "country": "United Kingdom", "latitude": 51.4740, "longitude": -0.0573},
    {"id": "l2", "restaurant_id": "r2", "location_name": "Southwark",
     "full_address": "6 Southwark Street, London SE1 1TQ", "city": "London",
     "country": "United Kingdom", "latitude": 51.5054, "longitude": -0.0906},
    {"id": "l3", "restaurant_id": "r3", "location_name": "Stoney Street",
     "full_address": "13 Stoney Street, London SE1 9AD", "city": "London",
     "country": "United Kingdom", "latitude": 51.5070, "longitude": -0.0910},
    {"id": "l4", "restaurant_id": "r3", "location_name": "Marylebone",
     "full_address": "56 James Street, London W1U 1HF", "city": "London",
     "country": "United Kingdom", "latitude": None, "longitude": None},
    {"id": "l5", "restaurant_id": "r4", "location_name": "Shoreditch",
     "full_address": "7 Boundary Street, London E2 7JE", "city": "London",
     "country": "United Kingdom", "latitude": 51.5243, "longitude": -0.0765},
    {"id": "l6", "restaurant_id": "r4", "location_name": "Covent Garden",
     "full_address": "12 Upper St Martin's Lane, London WC2H 9FB", "city": "London",
     "country": "United Kingdom", "latitude": 51.5125, "longitude": -0.1270},
    {"id": "l7", "restaurant_id": "r5", "location_name": "El Born",
     "full_address": "Plaça de les Olles 8, 08003 Barcelona", "city": "Barcelona",
     "country": "Spain", "latitude": 41.3838, "longitude": 2.1824},
    {"id": "l8", "restaurant_id": "r6", "location_name": "Soho",
     "full_address": "58 Brewer Street, London W1F 9TL", "city": "London",
     "country": "United Kingdom", "latitude": None, "longitude": -0.1360},
]


def google_payload(
    lat: float,
    lng: float,
    formatted_address: str,
    city: str | None = None,
    types: tuple[str, ...] = ("establishment", "point_of_interest"),
) -> dict:
    components = []
    if city:
        components.append({"long_name": city, "short_name": city, "types": ["locality", "political"]})
    return {
        "status": "OK",
        "results": [{
            "formatted_address": formatted_address,
            "geometry": {"location": {"lat": lat, "lng": lng}},
            "address_components": components,
            "place_id": "place-123",
            "types": list(types),
        }],
    }


def mock_session(payload=None, side_effect=None) -> MagicMock:
    session = MagicMock()
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    session.get.return_value = resp
    if side_effect is not None:
        session.get.side_effect = side_effect
    return session


@pytest.fixture
def store() -> CsvRestaurantStore:
    return CsvRestaurantStore.from_records(RESTAURANTS, LOCATIONS)


@pytest.fixture
def index(store) -> LocationIndex:
    idx = LocationIndex(store)
    idx.refresh()
    return idx


@pytest.fixture
def search_config() -> SearchConfig:
    return SearchConfig(
        proximity_threshold_minutes=20.0,
        geocode_cache_ttl=3600,
        city_cache_ttl=300,
        geocode_timeout=5.0,
    )


@pytest.fixture
def make_geocoder(search_config):
    """Build a Google-backed client whose HTTP session is a mock."""

    def _make(payload=None, side_effect=None) -> GeocodingClient:
        session = mock_session(payload, side_effect)
        return GeocodingClient(config=GOOGLE_CONFIG, search_config=search_config, session=session)

    return _make
