from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _default_provider() -> str:
    explicit = os.getenv("TABLEBOOK_GEOCODER", "").strip().lower()
    if explicit in ("google", "nominatim"):
        return explicit
    return "google" if os.getenv("GOOGLE_MAPS_API_KEY") else "nominatim"


@dataclass(frozen=True)
class SearchConfig:
    """
    Tunables for the tiered search pipeline.

    Durations are in seconds. A threshold of 20 walking minutes is roughly
    1.67 km at 5 km/h.
    """

    proximity_threshold_minutes: float = _env_float("TABLEBOOK_PROXIMITY_MINUTES", 20.0)
    geocode_cache_ttl: float = _env_float("TABLEBOOK_GEOCODE_CACHE_TTL", 24 * 3600)
    geocode_cache_size: int = 1024
    city_cache_ttl: float = _env_float("TABLEBOOK_CITY_CACHE_TTL", 300)
    geocode_timeout: float = _env_float("TABLEBOOK_GEOCODE_TIMEOUT", 5.0)
    min_query_length: int = 1
    max_query_length: int = 200
    index_refresh_interval: float = _env_float("TABLEBOOK_INDEX_REFRESH_INTERVAL", 300)


@dataclass(frozen=True)
class GeocoderConfig:
    provider: str = field(default_factory=_default_provider)
    api_key: str = os.getenv("GOOGLE_MAPS_API_KEY", "")
    google_url: str = "https://maps.googleapis.com/maps/api/geocode/json"
    nominatim_url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str | None = os.getenv("NOMINATIM_USER_AGENT")
    region: str | None = os.getenv("TABLEBOOK_GEOCODE_REGION") or None
    # Nominatim usage policy allows one request per second.
    nominatim_min_interval: float = _env_float("TABLEBOOK_NOMINATIM_MIN_INTERVAL", 1.0)
    enabled: bool = True


FALLBACK_USER_AGENT = "tablebook/1.0 (contact: example@example.com)"

DEFAULT_SEARCH_CONFIG = SearchConfig()
DEFAULT_GEOCODER_CONFIG = GeocoderConfig()
