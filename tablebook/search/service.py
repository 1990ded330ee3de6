"""Process-wide search components, created on first use."""

from __future__ import annotations

import logging
import threading

from ..storage.config import DEFAULT_STORE_CONFIG
from ..storage.repository import CsvRestaurantStore, RestaurantStore
from .cache import TTLCache
from .city_matcher import CityMatcher
from .config import DEFAULT_SEARCH_CONFIG, SearchConfig
from .geocoding import GeocodingClient
from .location_index import LocationIndex
from .orchestrator import SearchOrchestrator
from .resolver import CoordinateResolver

logger = logging.getLogger(__name__)

_lock = threading.RLock()
_store: RestaurantStore | None = None
_geocoder: GeocodingClient | None = None
_index: LocationIndex | None = None
_orchestrator: SearchOrchestrator | None = None
_resolver: CoordinateResolver | None = None
_config: SearchConfig = DEFAULT_SEARCH_CONFIG


def configure(
    store: RestaurantStore | None = None,
    geocoder: GeocodingClient | None = None,
    config: SearchConfig = DEFAULT_SEARCH_CONFIG,
) -> None:
    """Replace the components; anything left as None is rebuilt lazily."""
    global _store, _geocoder, _index, _orchestrator, _resolver, _config
    with _lock:
        if _index is not None:
            _index.stop_auto_refresh()
        _store = store
        _geocoder = geocoder
        _index = None
        _orchestrator = None
        _resolver = None
        _config = config


def get_store() -> RestaurantStore:
    global _store
    with _lock:
        if _store is None:
            _store = CsvRestaurantStore.from_csv(DEFAULT_STORE_CONFIG)
        return _store


def get_geocoder() -> GeocodingClient:
    global _geocoder
    with _lock:
        if _geocoder is None:
            _geocoder = GeocodingClient(search_config=_config)
        return _geocoder


def get_index() -> LocationIndex:
    global _index
    with _lock:
        if _index is None:
            _index = LocationIndex(get_store())
            try:
                _index.refresh()
            except Exception:
                # Cold index: proximity and city tiers report IndexUnavailable
                # until a later refresh succeeds.
                logger.exception("Initial location index build failed")
        return _index


def get_orchestrator() -> SearchOrchestrator:
    global _orchestrator
    with _lock:
        if _orchestrator is None:
            _orchestrator = SearchOrchestrator(
                store=get_store(),
                index=get_index(),
                geocoder=get_geocoder(),
                city_matcher=CityMatcher(
                    cache=TTLCache(ttl=_config.city_cache_ttl, max_size=512)
                ),
                config=_config,
            )
        return _orchestrator


def get_resolver() -> CoordinateResolver:
    global _resolver
    with _lock:
        if _resolver is None:
            _resolver = CoordinateResolver(get_store(), get_geocoder(), index=get_index())
        return _resolver


def get_config() -> SearchConfig:
    return _config
