"""
Forward geocoding: free text in, at most one resolved coordinate out.

One external request per cache miss, bounded by a timeout. Zero-result
responses are cached as tombstones so unresolvable queries are not retried
inside the freshness window; provider failures are logged and never cached.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any, Callable

import requests
from pydantic import ValidationError

from .cache import MISS, TTLCache
from .config import (
    DEFAULT_GEOCODER_CONFIG,
    DEFAULT_SEARCH_CONFIG,
    FALLBACK_USER_AGENT,
    GeocoderConfig,
    SearchConfig,
)
from .models import Coordinate, GeocodeResult

logger = logging.getLogger(__name__)

CITY_COMPONENT_TYPES = ("locality", "postal_town", "administrative_area_level_1")

_NOMINATIM_PLACE_KEYS = ("city", "town", "village", "hamlet")
_NOMINATIM_HIGH_CLASSES = {"amenity", "shop", "tourism", "leisure", "railway"}
_NOMINATIM_LOW_TYPES = {"city", "state", "country", "county", "region"}


class GeocodingError(Exception):
    """Base class for failures talking to the geocoding provider."""


class ProviderUnavailable(GeocodingError):
    """Network failure, timeout, non-2xx status or provider-side refusal."""


class MalformedProviderResponse(GeocodingError):
    """Payload did not have the expected shape."""


def normalize_query(query: str) -> str:
    return query.strip().lower()


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def extract_city(components: list[dict[str, Any]]) -> str | None:
    """Pick the city-level name from Google-style address components."""
    for wanted in CITY_COMPONENT_TYPES:
        for comp in components:
            if wanted in (comp.get("types") or []) and comp.get("long_name"):
                return comp["long_name"]
    return None


def determine_confidence(result: dict[str, Any]) -> str:
    types = result.get("types") or []
    if "establishment" in types or "point_of_interest" in types:
        return "high"
    if "street_address" in types or "sublocality" in types:
        return "medium"
    if result.get("partial_match") or "administrative_area_level_1" in types:
        return "low"
    return "medium"


def parse_google_payload(payload: Any) -> GeocodeResult | None:
    if not isinstance(payload, dict) or not isinstance(payload.get("status"), str):
        raise MalformedProviderResponse("expected an object with a status field")

    status = payload["status"]
    if status == "ZERO_RESULTS":
        return None
    if status != "OK":
        detail = payload.get("error_message") or "no detail"
        raise ProviderUnavailable(f"provider status {status}: {detail}")

    results = payload.get("results")
    if not isinstance(results, list):
        raise MalformedProviderResponse("results is not a list")
    if not results:
        return None

    first = results[0]
    try:
        loc = first["geometry"]["location"]
        coordinates = Coordinate(lat=float(loc["lat"]), lng=float(loc["lng"]))
        components = [c for c in first.get("address_components") or [] if isinstance(c, dict)]
        return GeocodeResult(
            coordinates=coordinates,
            formatted_address=str(first.get("formatted_address") or ""),
            city=extract_city(components),
            confidence=determine_confidence(first),
            place_id=first.get("place_id"),
            address_components=tuple(components),
        )
    except (KeyError, TypeError, ValueError, ValidationError) as exc:
        raise MalformedProviderResponse(f"unexpected result shape: {exc}") from exc


def parse_nominatim_payload(payload: Any) -> GeocodeResult | None:
    if not isinstance(payload, list):
        raise MalformedProviderResponse("expected a list of places")
    if not payload:
        return None

    first = payload[0]
    try:
        coordinates = Coordinate(lat=float(first["lat"]), lng=float(first["lon"]))
        address = first.get("address") or {}
        city = next((address[k] for k in _NOMINATIM_PLACE_KEYS if address.get(k)), None)

        kind = first.get("addresstype") or first.get("type") or ""
        if first.get("class") in _NOMINATIM_HIGH_CLASSES:
            confidence = "high"
        elif kind in _NOMINATIM_LOW_TYPES:
            confidence = "low"
        else:
            confidence = "medium"

        place_id = first.get("place_id")
        return GeocodeResult(
            coordinates=coordinates,
            formatted_address=str(first.get("display_name") or ""),
            city=city,
            confidence=confidence,
            place_id=str(place_id) if place_id is not None else None,
        )
    except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as exc:
        raise MalformedProviderResponse(f"unexpected place shape: {exc}") from exc


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GeocodingClient:
    def __init__(
        self,
        config: GeocoderConfig = DEFAULT_GEOCODER_CONFIG,
        search_config: SearchConfig = DEFAULT_SEARCH_CONFIG,
        session: requests.Session | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.timeout = search_config.geocode_timeout
        self.max_query_length = search_config.max_query_length
        self.session = session or requests.Session()
        self.cache = cache or TTLCache(
            ttl=search_config.geocode_cache_ttl,
            max_size=search_config.geocode_cache_size,
        )
        self._counter_lock = threading.Lock()
        self._calls = 0
        self._failures = 0
        self._empty = 0
        self._warned_disabled = False
        self._clock = clock
        self._sleep = sleep
        self._throttle_lock = threading.Lock()
        self._last_request_at: float | None = None

        if config.provider == "nominatim" and not config.user_agent:
            logger.warning(
                "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
                "This may violate Nominatim usage policy."
            )

    @property
    def available(self) -> bool:
        if not self.config.enabled:
            return False
        return self.config.provider != "google" or bool(self.config.api_key)

    def geocode(self, query: str) -> GeocodeResult | None:
        """
        Resolve ``query`` to a coordinate.

        Returns None for blank input, for a legitimate "no result" and for any
        provider failure alike. Failures are logged but not cached.
        """
        if not query or not query.strip():
            return None

        key = normalize_query(query)
        if len(key) > self.max_query_length:
            logger.warning(
                "Geocode query truncated from %d to %d characters", len(key), self.max_query_length
            )
            key = key[: self.max_query_length]
        cached = self.cache.get(key)
        if cached is not MISS:
            logger.debug("Geocode cache hit for %r", key)
            return cached

        if not self.available:
            if not self._warned_disabled:
                logger.warning("Geocoding disabled or missing API key; skipping lookup")
                self._warned_disabled = True
            return None

        with self._counter_lock:
            self._calls += 1
        try:
            result = self._fetch(key)
        except MalformedProviderResponse:
            self._record_failure()
            logger.error("Malformed geocoding response for %r", key, exc_info=True)
            return None
        except ProviderUnavailable as exc:
            self._record_failure()
            logger.warning("Geocoding provider unavailable for %r: %s", key, exc)
            return None

        if result is None:
            with self._counter_lock:
                self._empty += 1
            logger.info("No geocoding result for %r", key)
        else:
            logger.info(
                "Geocoded %r to %s,%s (%s)",
                key,
                result.coordinates.lat,
                result.coordinates.lng,
                result.formatted_address,
            )
        self.cache.set(key, result)
        return result

    def _record_failure(self) -> None:
        with self._counter_lock:
            self._failures += 1

    def _fetch(self, query: str) -> GeocodeResult | None:
        if self.config.provider == "google":
            params = {"address": query, "key": self.config.api_key}
            if self.config.region:
                params["region"] = self.config.region
            payload = self._get_json(self.config.google_url, params, headers={})
            return parse_google_payload(payload)

        params = {"q": query, "format": "jsonv2", "limit": "1", "addressdetails": "1"}
        if self.config.region:
            params["countrycodes"] = self.config.region
        ua = self.config.user_agent or FALLBACK_USER_AGENT
        logger.debug("Nominatim User-Agent: %s", _redact_email(ua))
        payload = self._get_json(self.config.nominatim_url, params, headers={"User-Agent": ua})
        return parse_nominatim_payload(payload)

    @property
    def min_interval(self) -> float:
        if self.config.provider != "nominatim":
            return 0.0
        return max(0.0, self.config.nominatim_min_interval)

    def _throttle(self) -> None:
        """Space provider requests at least ``min_interval`` seconds apart."""
        interval = self.min_interval
        if interval <= 0:
            return
        with self._throttle_lock:
            if self._last_request_at is not None:
                wait = interval - (self._clock() - self._last_request_at)
                if wait > 0:
                    self._sleep(wait)
            self._last_request_at = self._clock()

    def _get_json(self, url: str, params: dict[str, str], headers: dict[str, str]) -> Any:
        self._throttle()
        try:
            resp = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderUnavailable(str(exc)) from exc

        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedProviderResponse(f"response is not JSON: {exc}") from exc

    def stats(self) -> dict:
        with self._counter_lock:
            counters = {
                "provider": self.config.provider,
                "calls": self._calls,
                "failures": self._failures,
                "empty_results": self._empty,
            }
        counters["cache"] = self.cache.stats()
        return counters

    def clear_cache(self) -> None:
        self.cache.clear()
