"""
Coordinate backfill for stored locations.

Locations are often saved before they have coordinates. The resolver walks
the unresolved ones, tries progressively broader queries until one geocodes,
and writes the coordinate back through the store.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable

from ..storage.repository import RestaurantStore
from .geocoding import GeocodingClient
from .location_index import LocationIndex
from .models import Coordinate, Location

logger = logging.getLogger(__name__)

UK_POSTCODE_RE = re.compile(r"\b[A-Z]{1,2}\d{1,2}[A-Z]?\s?\d[A-Z]{2}\b", re.IGNORECASE)


@dataclass
class ResolutionProgress:
    total: int = 0
    processed: int = 0
    success: int = 0
    errors: list[str] = field(default_factory=list)
    is_complete: bool = False


def candidate_queries(location: Location) -> list[str]:
    """Queries to try for ``location``, most specific first, without duplicates."""
    address = (location.full_address or "").strip()
    city = (location.city or "").strip()
    parts = [p.strip() for p in address.split(",") if p.strip()]
    postcode_match = UK_POSTCODE_RE.search(address)
    postcode = postcode_match.group(0) if postcode_match else None

    queries: list[str] = []
    if address:
        queries.append(address)
    if postcode and city:
        queries.append(f"{postcode}, {city}")
    if postcode:
        queries.append(postcode)
    if len(parts) > 1:
        # Drop a leading building name
        queries.append(", ".join(parts[1:]))
    if len(parts) >= 2 and city:
        queries.append(f"{parts[1]}, {city}")
    if city:
        queries.append(city)

    seen: set[str] = set()
    unique: list[str] = []
    for q in queries:
        key = q.lower()
        if key not in seen:
            seen.add(key)
            unique.append(q)
    return unique


class CoordinateResolver:
    def __init__(
        self,
        store: RestaurantStore,
        geocoder: GeocodingClient,
        index: LocationIndex | None = None,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.index = index

    def resolve_location(self, location: Location) -> Coordinate | None:
        for query in candidate_queries(location):
            result = self.geocoder.geocode(query)
            if result is not None:
                logger.debug("Location %s resolved via %r", location.id, query)
                return result.coordinates
        return None

    def resolve_all(
        self,
        force_all: bool = False,
        on_progress: Callable[[ResolutionProgress], None] | None = None,
        delay: float = 0.0,
    ) -> ResolutionProgress:
        """
        Geocode every location missing coordinates (or all of them with
        ``force_all``) and store the results.

        A failure on one location is recorded in ``errors`` and the batch
        carries on.
        """
        pending = self.store.locations_needing_coordinates(force_all=force_all)
        progress = ResolutionProgress(total=len(pending))

        for i, location in enumerate(pending):
            try:
                coords = self.resolve_location(location)
                if coords is not None and self.store.set_coordinates(
                    location.id, coords.lat, coords.lng
                ):
                    progress.success += 1
                else:
                    progress.errors.append(f"Failed to geocode: {location.full_address}")
            except Exception as exc:
                logger.exception("Error resolving location %s", location.id)
                progress.errors.append(f"Error processing {location.full_address}: {exc}")
            progress.processed += 1
            if on_progress:
                on_progress(progress)
            if delay and i < len(pending) - 1:
                time.sleep(delay)

        progress.is_complete = True
        logger.info("Coordinate backfill complete. Success: %d/%d", progress.success, progress.total)
        if progress.success and self.index is not None:
            self.index.refresh()
        if on_progress and not pending:
            on_progress(progress)
        return progress

    def coverage(self) -> dict:
        unresolved = len(self.store.locations_needing_coordinates())
        total = len(self.store.locations_needing_coordinates(force_all=True))
        geocoded = total - unresolved
        return {
            "total": total,
            "geocoded": geocoded,
            "needs_geocoding": unresolved,
            "percentage": round(geocoded / total * 100) if total else 0,
        }
