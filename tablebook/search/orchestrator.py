"""
Tiered restaurant search.

Tiers run in a fixed order and the first one that yields anything wins:

1. ``local``     - substring match against stored restaurant/location text.
2. ``proximity`` - geocode the query and keep restaurants within walking
   distance of the resolved point, nearest first.
3. ``city``      - fuzzy-match the geocoded city against the cities we hold
   data for and return everything there.

Tiers 2 and 3 share a single geocode call per search. An empty outcome from
tier 3 is the terminal "no results" state, never an error.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from ..analytics.store import NEAR_ME, SEARCH, record_event
from ..storage.repository import RestaurantStore
from .city_matcher import CityMatcher, KnownCities
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .distance import distances_km, walking_minutes
from .geocoding import GeocodingClient
from .location_index import IndexUnavailable, LocationIndex
from .models import (
    Coordinate,
    GeocodeResult,
    Restaurant,
    SearchLocation,
    SearchResult,
    SearchTier,
)

logger = logging.getLogger(__name__)

TIER_ORDER: tuple[SearchTier, ...] = (
    SearchTier.local,
    SearchTier.proximity,
    SearchTier.city,
)


def next_tier(tier: SearchTier, found: bool) -> SearchTier | None:
    """Return the tier to run after ``tier``, or None to stop."""
    if found:
        return None
    idx = TIER_ORDER.index(tier)
    return TIER_ORDER[idx + 1] if idx + 1 < len(TIER_ORDER) else None


def _plural(n: int) -> str:
    return f"{n} restaurant{'s' if n != 1 else ''}"


@dataclass
class TierOutcome:
    restaurants: list[Restaurant] = field(default_factory=list)
    search_location: SearchLocation | None = None
    distances_km: dict[str, float] = field(default_factory=dict)
    message: str | None = None


class _QueryState:
    """Per-search memo so tiers 2 and 3 agree on a single geocode result."""

    def __init__(self, query: str, geocode: Callable[[str], GeocodeResult | None]) -> None:
        self.query = query
        self._geocode = geocode
        self._done = False
        self._result: GeocodeResult | None = None

    @property
    def geocoded(self) -> bool:
        return self._done

    def geocode(self) -> GeocodeResult | None:
        if not self._done:
            self._result = self._geocode(self.query)
            self._done = True
        return self._result


class SearchOrchestrator:
    def __init__(
        self,
        store: RestaurantStore,
        index: LocationIndex,
        geocoder: GeocodingClient,
        city_matcher: CityMatcher | None = None,
        config: SearchConfig = DEFAULT_SEARCH_CONFIG,
        known_cities: KnownCities | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self.geocoder = geocoder
        self.city_matcher = city_matcher or CityMatcher()
        self.config = config
        self.known_cities = known_cities or KnownCities(
            index.distinct_cities, ttl=config.city_cache_ttl
        )
        self._tiers: dict[SearchTier, Callable[[_QueryState], TierOutcome]] = {
            SearchTier.local: self._local_tier,
            SearchTier.proximity: self._proximity_tier,
            SearchTier.city: self._city_tier,
        }

    # ── Entry points ─────────────────────────────────────────────────────

    def search(self, query: str) -> SearchResult:
        start_time = time.time()
        text = (query or "").strip()

        if len(text) < max(1, self.config.min_query_length):
            return SearchResult(
                tier=SearchTier.local,
                message="Please enter a search term",
                elapsed_ms=round((time.time() - start_time) * 1000, 1),
            )

        state = _QueryState(text, self.geocoder.geocode)
        tried: list[SearchTier] = []
        tier: SearchTier | None = TIER_ORDER[0]
        last = TIER_ORDER[0]
        outcome = TierOutcome()
        while tier is not None:
            tried.append(tier)
            last = tier
            outcome = self._tiers[tier](state)
            logger.debug("Tier %s for %r yielded %d", tier.value, text, len(outcome.restaurants))
            tier = next_tier(tier, bool(outcome.restaurants))

        if not outcome.restaurants:
            outcome.message = (
                f'No restaurants found for "{text}". '
                "Try searching for a neighborhood, landmark, or restaurant name."
            )
        else:
            logger.info("Search %r answered by %s tier (%d)", text, last.value, len(outcome.restaurants))

        elapsed_ms = round((time.time() - start_time) * 1000, 1)
        record_event(SEARCH, {
            "query": text,
            "tier": last.value,
            "tiers_tried": [t.value for t in tried],
            "results_returned": len(outcome.restaurants),
            "geocoded": state.geocoded,
            "response_time_ms": elapsed_ms,
        })
        return SearchResult(
            restaurants=outcome.restaurants,
            tier=last,
            search_location=outcome.search_location,
            distances_km=outcome.distances_km,
            tiers_tried=tried,
            message=outcome.message,
            elapsed_ms=elapsed_ms,
        )

    def near_me(self, origin: Coordinate, max_walking_minutes: float | None = None) -> SearchResult:
        """Proximity search from a device coordinate; no geocoding involved."""
        start_time = time.time()
        minutes = (
            self.config.proximity_threshold_minutes
            if max_walking_minutes is None
            else max_walking_minutes
        )
        ranked = self._nearby(origin, minutes)

        if ranked:
            message = f"Found {_plural(len(ranked))} within {minutes:g} minutes' walk"
        else:
            message = f"No restaurants within {minutes:g} minutes' walk"

        elapsed_ms = round((time.time() - start_time) * 1000, 1)
        record_event(NEAR_ME, {
            "tier": SearchTier.proximity.value,
            "max_walking_minutes": minutes,
            "results_returned": len(ranked),
            "response_time_ms": elapsed_ms,
        })
        return SearchResult(
            restaurants=[rest for rest, _ in ranked],
            tier=SearchTier.proximity,
            search_location=SearchLocation(name="Current location", coordinates=origin),
            distances_km={rest.id: round(km, 3) for rest, km in ranked},
            tiers_tried=[SearchTier.proximity],
            message=message,
            elapsed_ms=elapsed_ms,
        )

    # ── Tiers ────────────────────────────────────────────────────────────

    def _local_tier(self, state: _QueryState) -> TierOutcome:
        found = self.store.find_by_text(state.query)
        return TierOutcome(
            restaurants=found,
            message=f'Found {_plural(len(found))} matching "{state.query}"',
        )

    def _proximity_tier(self, state: _QueryState) -> TierOutcome:
        geo = state.geocode()
        if geo is None:
            return TierOutcome()

        ranked = self._nearby(geo.coordinates, self.config.proximity_threshold_minutes)
        if not ranked:
            return TierOutcome()
        return TierOutcome(
            restaurants=[rest for rest, _ in ranked],
            search_location=SearchLocation(
                name=state.query,
                coordinates=geo.coordinates,
                city=geo.city,
                formatted_address=geo.formatted_address,
            ),
            distances_km={rest.id: round(km, 3) for rest, km in ranked},
            message=f"Found {_plural(len(ranked))} within walking distance of {geo.display_name}",
        )

    def _city_tier(self, state: _QueryState) -> TierOutcome:
        geo = state.geocode()
        if geo is None or not geo.city:
            return TierOutcome()

        try:
            known = self.known_cities.get()
            matched = self.city_matcher.match_city(geo.city, known)
            if matched is None:
                logger.info("No known city matches %r", geo.city)
                return TierOutcome()
            restaurants = self.index.restaurants_in_city(matched)
        except IndexUnavailable:
            logger.warning("Location index unavailable; city fallback skipped")
            return TierOutcome()

        if not restaurants:
            return TierOutcome()
        return TierOutcome(
            restaurants=restaurants,
            search_location=SearchLocation(
                name=state.query,
                coordinates=geo.coordinates,
                city=geo.city,
                formatted_address=geo.formatted_address,
                matched_city=matched,
            ),
            message=(
                f"No restaurants near {geo.display_name}. "
                f"Showing all restaurants in {matched}."
            ),
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _nearby(self, origin: Coordinate, max_minutes: float) -> list[tuple[Restaurant, float]]:
        """Restaurants with any location inside ``max_minutes``, nearest first."""
        try:
            snap = self.index.snapshot()
        except IndexUnavailable:
            logger.warning("Location index unavailable; proximity search skipped")
            return []
        if not snap.pairs:
            return []

        km = distances_km(origin, snap.lats, snap.lngs)
        minutes = walking_minutes(km)

        best: dict[str, tuple[float, Restaurant]] = {}
        for (rest, _loc), dist, walk in zip(snap.pairs, km, minutes):
            if walk > max_minutes:
                continue
            prev = best.get(rest.id)
            if prev is None or dist < prev[0]:
                best[rest.id] = (float(dist), rest)

        ordered = sorted(best.values(), key=lambda item: (item[0], item[1].name.lower()))
        return [(rest, dist) for dist, rest in ordered]
