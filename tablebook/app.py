from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException

from .analytics.aggregator import compute_analytics
from .analytics.store import get_events
from .search.models import (
    Coordinate,
    NearMeRequest,
    Restaurant,
    SearchRequest,
    SearchResult,
)
from .search.resolver import ResolutionProgress
from .search.service import (
    get_config,
    get_geocoder,
    get_index,
    get_orchestrator,
    get_resolver,
    get_store,
)
from .storage.repository import CsvRestaurantStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    index = get_index()
    index.start_auto_refresh(get_config().index_refresh_interval)
    yield
    index.stop_auto_refresh()


app = FastAPI(title="Tablebook Restaurant Search API", version="1.0.0", lifespan=lifespan)


# ── Public endpoints ─────────────────────────────────────────────────────


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/metadata")
def metadata() -> dict:
    store = get_store()
    cuisines: set[str] = set()
    for rest in store.list_restaurants():
        if rest.cuisine:
            cuisines.add(rest.cuisine.strip())
    return {"cities": sorted(store.distinct_cities()), "cuisines": sorted(cuisines)}


# ── Search ───────────────────────────────────────────────────────────────


@app.post("/search", response_model=SearchResult)
def search(body: SearchRequest) -> SearchResult:
    return get_orchestrator().search(body.query)


@app.post("/search/near-me", response_model=SearchResult)
def search_near_me(body: NearMeRequest) -> SearchResult:
    origin = Coordinate(lat=body.latitude, lng=body.longitude)
    return get_orchestrator().near_me(origin, body.max_walking_minutes)


# ── Restaurants (read-only) ──────────────────────────────────────────────


@app.get("/restaurants", response_model=list[Restaurant])
def list_restaurants(status: str | None = None, cuisine: str | None = None) -> list[Restaurant]:
    return get_store().list_restaurants(status=status, cuisine=cuisine)


@app.get("/restaurants/{restaurant_id}", response_model=Restaurant)
def get_restaurant(restaurant_id: str) -> Restaurant:
    restaurant = get_store().get_restaurant(restaurant_id)
    if restaurant is None:
        raise HTTPException(status_code=404, detail="Restaurant not found")
    return restaurant


# ── Maintenance ──────────────────────────────────────────────────────────


@app.post("/index/refresh")
def refresh_index() -> dict:
    snap = get_index().refresh()
    get_orchestrator().known_cities.invalidate()
    return {"resolved_locations": len(snap.pairs), "cities": len(snap.cities)}


@app.post("/geocoding/backfill")
def geocoding_backfill(force_all: bool = False) -> ResolutionProgress:
    progress = get_resolver().resolve_all(force_all=force_all)
    store = get_store()
    if progress.success and isinstance(store, CsvRestaurantStore):
        store.persist()
        logger.info("Persisted %d newly resolved locations", progress.success)
    get_orchestrator().known_cities.invalidate()
    return progress


@app.get("/geocoding/coverage")
def geocoding_coverage() -> dict:
    return get_resolver().coverage()


@app.get("/cache/stats")
def cache_stats() -> dict:
    return get_geocoder().stats()


@app.get("/analytics")
def analytics() -> dict:
    return compute_analytics(get_events())


def main() -> None:
    import uvicorn

    uvicorn.run(
        "tablebook.app:app",
        host=os.getenv("TABLEBOOK_HOST", "127.0.0.1"),
        port=int(os.getenv("TABLEBOOK_PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
