"""Prometheus counters for cache and catalog activity."""

from __future__ import annotations

from prometheus_client import Counter

REMOTE_FETCHES = Counter(
    "link_summary_remote_fetches_total",
    "Remote resources streamed into the content cache",
)
FETCHED_BYTES = Counter(
    "link_summary_fetched_bytes_total",
    "Bytes streamed from remote resources",
)
DEPLOYMENTS = Counter(
    "link_summary_deployments_total",
    "Files deployed into a destination directory",
    ["mode"],
)
CATALOG_LOOKUPS = Counter(
    "link_summary_catalog_lookups_total",
    "Catalog lookups by outcome",
    ["outcome"],
)
CATALOG_SYNCS = Counter(
    "link_summary_catalog_syncs_total",
    "Catalog sync attempts that reached the filesystem",
    ["result"],
)


def record_lookup(outcome: str) -> None:
    """Count a catalog lookup; ``outcome`` is ``hit``, ``stale`` or ``miss``."""

    CATALOG_LOOKUPS.labels(outcome=outcome).inc()
