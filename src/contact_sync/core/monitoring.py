"""Prometheus metrics for sync outcomes and external API calls."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# ── Sync Metrics ─────────────────────────────────────────────────────────────

sync_operations_total = Counter(
    "contact_sync_operations_total",
    "Sync scenario outcomes",
    ["scenario", "action", "status"],
)

sync_duration_seconds = Histogram(
    "contact_sync_duration_seconds",
    "Sync scenario duration in seconds",
    ["scenario"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

sync_echoes_suppressed_total = Counter(
    "contact_sync_echoes_suppressed_total",
    "Inbound events dropped because they carried our own sync tag",
    ["side"],
)

# ── External API Metrics ─────────────────────────────────────────────────────

external_retries_total = Counter(
    "contact_sync_external_retries_total",
    "Retried external API calls by failure class",
    ["reason"],
)


def record_sync_outcome(
    scenario: str, action: str, status: str, duration_ms: int | None = None
) -> None:
    """Record one scenario outcome and, when known, its duration."""
    sync_operations_total.labels(scenario=scenario, action=action, status=status).inc()
    if duration_ms is not None:
        sync_duration_seconds.labels(scenario=scenario).observe(duration_ms / 1000)
