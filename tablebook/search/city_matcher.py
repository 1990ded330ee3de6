"""
Fuzzy matching of a geocoded city name against the cities we hold data for.

Strategies run in order and the first hit wins:
exact (case-insensitive), containment in either direction, then bounded
Levenshtein distance with deterministic tie-breaking.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from rapidfuzz.distance import Levenshtein

from .cache import MISS, TTLCache

logger = logging.getLogger(__name__)


class CityMatchStrategy(Protocol):
    name: str

    def match(self, candidate: str, known: dict[str, str]) -> str | None:
        """``candidate`` is lower-cased; ``known`` maps lower-cased -> original."""
        ...


class ExactMatch:
    name = "exact"

    def match(self, candidate: str, known: dict[str, str]) -> str | None:
        return known.get(candidate)


class ContainmentMatch:
    """'Central London' contains 'London'; 'Barcelona' is inside 'Barcelona Province'."""

    name = "containment"

    def match(self, candidate: str, known: dict[str, str]) -> str | None:
        hits = [
            lower
            for lower in known
            if lower and (lower in candidate or candidate in lower)
        ]
        if not hits:
            return None
        # Prefer the closest length to the candidate, then alphabetical.
        hits.sort(key=lambda lower: (abs(len(lower) - len(candidate)), lower))
        return known[hits[0]]


class EditDistanceMatch:
    name = "edit_distance"

    def __init__(self, max_distance: int = 2, min_length: int = 4) -> None:
        self.max_distance = max_distance
        self.min_length = min_length

    def match(self, candidate: str, known: dict[str, str]) -> str | None:
        if len(candidate) < self.min_length:
            return None
        best: tuple[int, str] | None = None
        for lower in known:
            if len(lower) < self.min_length:
                continue
            dist = Levenshtein.distance(candidate, lower, score_cutoff=self.max_distance)
            if dist > self.max_distance:
                continue
            if best is None or (dist, lower) < best:
                best = (dist, lower)
        return known[best[1]] if best else None


DEFAULT_STRATEGIES: tuple[CityMatchStrategy, ...] = (
    ExactMatch(),
    ContainmentMatch(),
    EditDistanceMatch(),
)


class CityMatcher:
    def __init__(
        self,
        strategies: Iterable[CityMatchStrategy] = DEFAULT_STRATEGIES,
        cache: TTLCache | None = None,
    ) -> None:
        self.strategies = tuple(strategies)
        self.cache = cache

    def match_city(self, candidate: str | None, known_cities: Iterable[str]) -> str | None:
        if not candidate or not candidate.strip():
            return None
        needle = candidate.strip().lower()
        known = {c.strip().lower(): c.strip() for c in known_cities if c and c.strip()}
        if not known:
            return None

        key = (needle, frozenset(known))
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not MISS:
                return cached

        matched = None
        for strategy in self.strategies:
            matched = strategy.match(needle, known)
            if matched is not None:
                logger.debug("City %r matched %r via %s", candidate, matched, strategy.name)
                break

        if self.cache is not None:
            self.cache.set(key, matched)
        return matched


class KnownCities:
    """Short-lived memo of the distinct city set, which changes only on writes."""

    def __init__(
        self,
        source: Callable[[], set[str]],
        ttl: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._cache = TTLCache(ttl=ttl, max_size=1, clock=clock)

    def get(self) -> set[str]:
        cities = self._cache.get("cities")
        if cities is MISS:
            cities = frozenset(self._source())
            self._cache.set("cities", cities)
        return set(cities)

    def invalidate(self) -> None:
        self._cache.invalidate("cities")
