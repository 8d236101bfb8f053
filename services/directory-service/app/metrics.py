"""Prometheus counters exported by the directory service."""

from __future__ import annotations

from prometheus_client import Counter

POOL_ASSIGNMENTS = Counter(
    "directory_pool_assignments_total",
    "Flow-account assignments handed out",
    ["mode"],
)
POOL_RELEASES = Counter(
    "directory_pool_releases_total",
    "Flow-account assignments released",
)
POOL_COUNTER_DRIFT = Counter(
    "directory_pool_counter_drift_total",
    "Occupancy counter updates skipped or failed after the user-side write",
    ["operation"],
)
ENTITLEMENT_DENIALS = Counter(
    "directory_entitlement_denials_total",
    "Paid-tier upgrades refused because the authorized token ceiling was reached",
)
