from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from conftest import google_payload
from tablebook.search.geocoding import GeocodingClient
from tablebook.search.location_index import LocationIndex
from tablebook.search.models import Coordinate, GeocodeResult, SearchTier
from tablebook.search.orchestrator import TIER_ORDER, SearchOrchestrator, next_tier
from tablebook.storage.repository import CsvRestaurantStore

BOROUGH_MARKET = GeocodeResult(
    coordinates=Coordinate(lat=51.5055, lng=-0.0910),
    formatted_address="Borough Market, 8 Southwark St, London SE1 1TL, UK",
    city="London",
    confidence="high",
)
HAMPSTEAD_HEATH = GeocodeResult(
    coordinates=Coordinate(lat=51.5608, lng=-0.1629),
    formatted_address="Hampstead Heath, London NW3, UK",
    city="London",
    confidence="high",
)


def _mock_geocoder(result: GeocodeResult | None) -> MagicMock:
    geocoder = MagicMock(spec=GeocodingClient)
    geocoder.geocode.return_value = result
    return geocoder


@pytest.fixture
def build(store, index, search_config):
    def _build(geocoder, idx=None) -> SearchOrchestrator:
        return SearchOrchestrator(
            store=store,
            index=idx if idx is not None else index,
            geocoder=geocoder,
            config=search_config,
        )

    return _build


# ── Decision function ────────────────────────────────────────────────────


def test_next_tier_progression():
    assert TIER_ORDER == (SearchTier.local, SearchTier.proximity, SearchTier.city)
    assert next_tier(SearchTier.local, found=False) == SearchTier.proximity
    assert next_tier(SearchTier.proximity, found=False) == SearchTier.city
    assert next_tier(SearchTier.city, found=False) is None
    for tier in TIER_ORDER:
        assert next_tier(tier, found=True) is None


# ── Scenarios ────────────────────────────────────────────────────────────


def test_local_name_match_makes_no_geocode_call(build):
    geocoder = _mock_geocoder(BOROUGH_MARKET)
    result = build(geocoder).search("Peckham Cellars")

    assert result.tier == SearchTier.local
    assert [r.name for r in result.restaurants] == ["Peckham Cellars"]
    assert result.tiers_tried == [SearchTier.local]
    assert result.search_location is None
    assert 'matching "Peckham Cellars"' in result.message
    geocoder.geocode.assert_not_called()


def test_proximity_results_sorted_nearest_first(build):
    geocoder = _mock_geocoder(BOROUGH_MARKET)
    result = build(geocoder).search("Borough Market")

    assert result.tier == SearchTier.proximity
    assert [r.name for r in result.restaurants] == ["Padella", "Bao"]
    assert result.distances_km["r2"] < result.distances_km["r3"] < 1.67
    assert result.search_location.name == "Borough Market"
    assert result.search_location.coordinates == BOROUGH_MARKET.coordinates
    assert result.search_location.city == "London"
    assert "within walking distance of Borough Market" in result.message
    assert result.tiers_tried == [SearchTier.local, SearchTier.proximity]
    geocoder.geocode.assert_called_once_with("Borough Market")


def test_city_fallback_reuses_single_geocode(build):
    geocoder = _mock_geocoder(HAMPSTEAD_HEATH)
    result = build(geocoder).search("Hampstead Heath")

    assert result.tier == SearchTier.city
    assert [r.name for r in result.restaurants] == [
        "Bao", "Dishoom", "Kiln", "Padella", "Peckham Cellars",
    ]
    assert result.search_location.matched_city == "London"
    assert "Showing all restaurants in London" in result.message
    assert result.tiers_tried == [SearchTier.local, SearchTier.proximity, SearchTier.city]
    assert geocoder.geocode.call_count == 1


def test_unresolvable_query_is_empty_city_result(build):
    geocoder = _mock_geocoder(None)
    result = build(geocoder).search("Zzyyx Nonexistent Place")

    assert result.tier == SearchTier.city
    assert result.restaurants == []
    assert result.search_location is None
    assert result.message.startswith('No restaurants found for "Zzyyx Nonexistent Place"')
    assert geocoder.geocode.call_count == 1


def test_repeated_query_served_from_geocode_cache(build, make_geocoder):
    geocoder = make_geocoder(google_payload(
        51.5055, -0.0910, "Borough Market, 8 Southwark St, London SE1 1TL, UK", city="London",
    ))
    orchestrator = build(geocoder)

    first = orchestrator.search("Borough Market")
    second = orchestrator.search("Borough Market")

    assert first.model_dump(exclude={"elapsed_ms"}) == second.model_dump(exclude={"elapsed_ms"})
    assert geocoder.session.get.call_count == 1


def test_provider_failure_falls_through_without_raising(build, make_geocoder):
    geocoder = make_geocoder(side_effect=requests.ConnectionError("unreachable"))
    result = build(geocoder).search("Hampstead Heath")

    assert result.tier == SearchTier.city
    assert result.restaurants == []
    assert result.search_location is None


def test_provider_zero_results_is_terminal_empty(build, make_geocoder):
    geocoder = make_geocoder({"status": "ZERO_RESULTS", "results": []})
    result = build(geocoder).search("Zzyyx Nonexistent Place")

    assert result.tier == SearchTier.city
    assert result.restaurants == []
    assert geocoder.session.get.call_count == 1


def test_geocoded_city_we_have_no_data_for(build):
    lisbon = GeocodeResult(
        coordinates=Coordinate(lat=38.7223, lng=-9.1393),
        formatted_address="Lisbon, Portugal",
        city="Lisbon",
    )
    result = build(_mock_geocoder(lisbon)).search("Alfama")

    assert result.tier == SearchTier.city
    assert result.restaurants == []
    assert result.search_location is None


def test_geocode_without_city_component(build):
    nowhere = GeocodeResult(
        coordinates=Coordinate(lat=0.0, lng=0.0),
        formatted_address="Gulf of Guinea",
    )
    result = build(_mock_geocoder(nowhere)).search("Null Island")
    assert result.tier == SearchTier.city
    assert result.restaurants == []


# ── Edge policies ────────────────────────────────────────────────────────


@pytest.mark.parametrize("query", ["", "   ", "\t\n"])
def test_blank_query_short_circuits(build, query):
    geocoder = _mock_geocoder(BOROUGH_MARKET)
    result = build(geocoder).search(query)

    assert result.tier == SearchTier.local
    assert result.restaurants == []
    assert result.tiers_tried == []
    geocoder.geocode.assert_not_called()


def test_threshold_is_configurable(store, index):
    from tablebook.search.config import SearchConfig

    orchestrator = SearchOrchestrator(
        store=store,
        index=index,
        geocoder=_mock_geocoder(BOROUGH_MARKET),
        config=SearchConfig(proximity_threshold_minutes=1.0),
    )
    result = orchestrator.search("Borough Market")
    assert [r.name for r in result.restaurants] == ["Padella"]


def test_index_unavailable_degrades_to_empty(build, store):
    cold = LocationIndex(store)
    geocoder = _mock_geocoder(BOROUGH_MARKET)
    orchestrator = build(geocoder, idx=cold)

    result = orchestrator.search("Borough Market")
    assert result.tier == SearchTier.city
    assert result.restaurants == []

    # Tier 1 still answers from the store directly
    assert orchestrator.search("Padella").tier == SearchTier.local


def test_chain_with_two_nearby_locations_appears_once():
    store = CsvRestaurantStore.from_records(
        [
            {"id": "d", "name": "Dishoom", "cuisine": "Indian", "status": "visited", "address": ""},
            {"id": "h", "name": "Hoppers", "cuisine": "Sri Lankan", "status": "to-visit", "address": ""},
        ],
        [
            {"id": "d1", "restaurant_id": "d", "location_name": "A", "full_address": "",
             "city": "London", "latitude": 51.5130, "longitude": -0.1300},
            {"id": "d2", "restaurant_id": "d", "location_name": "B", "full_address": "",
             "city": "London", "latitude": 51.5102, "longitude": -0.1300},
            {"id": "h1", "restaurant_id": "h", "location_name": "C", "full_address": "",
             "city": "London", "latitude": 51.5110, "longitude": -0.1300},
        ],
    )
    index = LocationIndex(store)
    index.refresh()
    here = Coordinate(lat=51.5100, lng=-0.1300)
    orchestrator = SearchOrchestrator(store=store, index=index, geocoder=_mock_geocoder(None))

    result = orchestrator.near_me(here)

    assert [r.id for r in result.restaurants] == ["d", "h"]
    # sorted by the closer of Dishoom's two locations
    assert result.distances_km["d"] == pytest.approx(0.022, abs=0.002)


# ── Near me ──────────────────────────────────────────────────────────────


def test_near_me_skips_geocoding(build):
    geocoder = _mock_geocoder(None)
    result = build(geocoder).near_me(Coordinate(lat=51.5055, lng=-0.0910))

    assert result.tier == SearchTier.proximity
    assert [r.name for r in result.restaurants] == ["Padella", "Bao"]
    assert result.search_location.coordinates == Coordinate(lat=51.5055, lng=-0.0910)
    geocoder.geocode.assert_not_called()


def test_near_me_minutes_override(build):
    result = build(_mock_geocoder(None)).near_me(
        Coordinate(lat=51.5055, lng=-0.0910), max_walking_minutes=1
    )
    assert [r.name for r in result.restaurants] == ["Padella"]


def test_near_me_far_away_is_empty(build):
    result = build(_mock_geocoder(None)).near_me(Coordinate(lat=-33.8688, lng=151.2093))
    assert result.restaurants == []
    assert result.message.startswith("No restaurants within")


def test_near_me_zero_minutes_is_not_replaced_by_default(build):
    result = build(_mock_geocoder(None)).near_me(
        Coordinate(lat=51.5055, lng=-0.0910), max_walking_minutes=0
    )
    assert result.restaurants == []
    assert result.message == "No restaurants within 0 minutes' walk"
