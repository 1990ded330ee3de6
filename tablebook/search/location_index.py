"""
Read-optimised snapshot of restaurant locations for proximity and city lookups.

A snapshot is built off to the side and swapped in with a single reference
assignment, so searches in flight keep reading the snapshot they started with.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field

import numpy as np

from ..storage.repository import RestaurantStore
from .models import Location, Restaurant

logger = logging.getLogger(__name__)


class IndexUnavailable(Exception):
    """Raised when no snapshot has been built yet."""


@dataclass(frozen=True, eq=False)
class IndexSnapshot:
    pairs: tuple[tuple[Restaurant, Location], ...]
    lats: np.ndarray
    lngs: np.ndarray
    cities: frozenset[str]
    by_city: dict[str, tuple[Restaurant, ...]]
    source_version: int = 0
    built_at: float = field(default_factory=time.time)


def build_snapshot(store: RestaurantStore) -> IndexSnapshot:
    # Read the version first so a concurrent write leaves the snapshot stale.
    version = store.version
    pairs = tuple(
        (rest, loc) for rest, loc in store.all_with_resolved_coordinates() if loc.coordinates
    )
    lats = np.array([loc.latitude for _, loc in pairs], dtype=float)
    lngs = np.array([loc.longitude for _, loc in pairs], dtype=float)

    # Every location counts towards a city, resolved or not.
    by_city: dict[str, list[Restaurant]] = {}
    for rest in store.list_restaurants():
        seen: set[str] = set()
        for loc in rest.locations:
            if not loc.city:
                continue
            key = loc.city.strip().lower()
            if key and key not in seen:
                seen.add(key)
                by_city.setdefault(key, []).append(rest)

    cities = frozenset(c.strip() for c in store.distinct_cities() if c and c.strip())
    return IndexSnapshot(
        pairs=pairs,
        lats=lats,
        lngs=lngs,
        cities=cities,
        by_city={k: tuple(v) for k, v in by_city.items()},
        source_version=version,
    )


class LocationIndex:
    def __init__(self, store: RestaurantStore) -> None:
        self.store = store
        self._snapshot: IndexSnapshot | None = None
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> IndexSnapshot:
        snap = self._snapshot
        if snap is None:
            raise IndexUnavailable("location index has not been built yet")
        return snap

    def refresh(self) -> IndexSnapshot:
        """Rebuild from the store and swap the new snapshot in."""
        with self._refresh_lock:
            snap = build_snapshot(self.store)
            self._snapshot = snap
        logger.info(
            "Location index rebuilt: %d resolved locations, %d cities",
            len(snap.pairs),
            len(snap.cities),
        )
        return snap

    def refresh_if_stale(self) -> bool:
        """Rebuild when the store has been written to since the last build."""
        snap = self._snapshot
        if snap is not None and snap.source_version == self.store.version:
            return False
        self.refresh()
        return True

    # ── Queries ──────────────────────────────────────────────────────────

    def all_resolved_locations(self) -> list[tuple[Restaurant, Location]]:
        return list(self.snapshot().pairs)

    def distinct_cities(self) -> set[str]:
        return set(self.snapshot().cities)

    def restaurants_in_city(self, city: str) -> list[Restaurant]:
        if not city or not city.strip():
            return []
        return list(self.snapshot().by_city.get(city.strip().lower(), ()))

    # ── Background refresh ───────────────────────────────────────────────

    def start_auto_refresh(self, interval: float) -> None:
        if interval <= 0 or self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, args=(interval,), name="location-index-refresh", daemon=True
        )
        self._thread.start()

    def stop_auto_refresh(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _run(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.refresh_if_stale()
            except Exception:
                # Keep serving the previous snapshot
                logger.exception("Location index refresh failed")
