from __future__ import annotations

from collections import Counter
from typing import Any

from .store import NEAR_ME, SEARCH

_TIERS = ("local", "proximity", "city")


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    searches = [e for e in events if e["type"] == SEARCH]
    near_me = [e for e in events if e["type"] == NEAR_ME]
    total = len(searches)

    # Average response time
    times = [s["response_time_ms"] for s in searches if "response_time_ms" in s]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Top queries, case-folded so "Soho" and "soho" count together
    query_counter: Counter[str] = Counter()
    for s in searches:
        query_counter[(s.get("query") or "unknown").lower()] += 1
    top_queries = [{"name": n, "count": c} for n, c in query_counter.most_common(10)]

    # Which tier answered, counting only searches that returned something
    tier_counter: Counter[str] = Counter()
    for s in searches:
        if s.get("results_returned"):
            tier_counter[s.get("tier", "unknown")] += 1
    tier_breakdown = {t: tier_counter.get(t, 0) for t in _TIERS}

    zero_results = sum(1 for s in searches if not s.get("results_returned"))
    geocoded = sum(1 for s in searches if s.get("geocoded"))

    return {
        "total_searches": total,
        "near_me_searches": len(near_me),
        "avg_response_time_ms": avg_time,
        "top_queries": top_queries,
        "tier_breakdown": tier_breakdown,
        "zero_result_rate": round(zero_results / total * 100, 1) if total else 0.0,
        "geocoded_searches": geocoded,
    }
