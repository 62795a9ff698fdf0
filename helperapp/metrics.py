"""Centralised Prometheus metric definitions for the helper workers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


CLAIM_COUNTER = Counter(
    "helper_session_claim_total",
    "Claim attempts on pending sessions",
    labelnames=["outcome"],
)

TURN_COUNTER = Counter(
    "helper_turn_total",
    "Submitted turns by processing outcome",
    labelnames=["game_type", "outcome"],
)

FINALIZE_COUNTER = Counter(
    "helper_finalize_total",
    "Finalization attempts by resulting status",
    labelnames=["status"],
)

FINALIZE_DURATION = Histogram(
    "helper_finalize_duration_seconds",
    "Latency of the finalize transaction",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5],
)

TIMEOUT_COUNTER = Counter(
    "helper_turn_timeout_total",
    "Turn timers that expired and requested finalization",
)

POLLER_REPUBLISHED_COUNTER = Counter(
    "helper_poller_republished_total",
    "Claim events re-published by the fallback poller",
)

POLLER_ORPHANS_COUNTER = Counter(
    "helper_poller_orphans_total",
    "In-progress sessions finalized because their owner went silent",
)

BUS_RECONNECT_COUNTER = Counter(
    "helper_bus_reconnect_total",
    "Notification bus listener reconnect attempts",
)

BUS_PUBLISH_FAILURES = Counter(
    "helper_bus_publish_failures_total",
    "Notification bus publish calls that failed",
    labelnames=["channel"],
)
