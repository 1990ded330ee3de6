"""
Location-aware restaurant search.

Responsibilities:
- Resolve a free-text query into restaurants using three ordered tiers:
  local text match, geocode + walking-distance proximity, city fallback.
- Keep external geocoding calls to at most one per query, cached with a TTL.
- Serve "near me" lookups straight from a device coordinate.
- Backfill missing coordinates on stored restaurant locations.
"""
