# yearephem/utils/metrics.py
"""
Prometheus metrics shared by the engine and the HTTP layer.

Names are stable (dashboards key on them); labels are low-cardinality.
"""
from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Gauge, Histogram

# ───────────────────────── HTTP ─────────────────────────
MET_REQUESTS: Final = Counter("yearephem_api_requests_total", "API requests", ["route"])
REQ_LATENCY: Final = Histogram("yearephem_request_seconds", "API request latency", ["route"])
GAUGE_APP_UP: Final = Gauge("yearephem_app_up", "1 if app is running")

# ───────────────────────── oracle ─────────────────────────
ORACLE_CALLS: Final = Counter(
    "yearephem_oracle_calls_total", "Position oracle evaluations", ["phase"]
)
ORACLE_FAILURES: Final = Counter(
    "yearephem_oracle_failures_total", "Position oracle failures", ["phase"]
)

# ───────────────────────── engine ─────────────────────────
REFINE_FALLBACKS: Final = Counter(
    "yearephem_refine_fallbacks_total", "Refinements that fell back to the sample instant", ["kind"]
)
EVENTS_DETECTED: Final = Counter(
    "yearephem_events_total", "Events emitted after deduplication", ["kind"]
)
YEAR_SECONDS: Final = Histogram(
    "yearephem_year_compute_seconds", "Wall time of one year computation",
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600),
)

# ───────────────────────── cache ─────────────────────────
CACHE_HITS: Final = Counter("yearephem_cache_hits_total", "Year result cache hits")
CACHE_MISSES: Final = Counter("yearephem_cache_misses_total", "Year result cache misses")
CACHE_EVICTIONS: Final = Counter("yearephem_cache_evictions_total", "Year result cache evictions")
CACHE_SIZE: Final = Gauge("yearephem_cache_entries", "Year results currently cached")

__all__ = [
    "MET_REQUESTS", "REQ_LATENCY", "GAUGE_APP_UP",
    "ORACLE_CALLS", "ORACLE_FAILURES",
    "REFINE_FALLBACKS", "EVENTS_DETECTED", "YEAR_SECONDS",
    "CACHE_HITS", "CACHE_MISSES", "CACHE_EVICTIONS", "CACHE_SIZE",
]
