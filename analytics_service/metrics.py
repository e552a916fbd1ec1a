"""Métricas Prometheus del agregador de analytics."""

from prometheus_client import Counter, Gauge, Histogram

ANALYTICS_EVENTS = Counter(
    "analytics_events_total",
    "Events handled by the analytics aggregator",
    ["status"],  # ok, skipped
)

ANALYTICS_SESSIONS_FLUSHED = Counter(
    "analytics_sessions_flushed_total",
    "Sessions written to the aggregate store",
    ["outcome"],  # inserted, merged, failed
)

ANALYTICS_FLUSH_CYCLES = Counter(
    "analytics_flush_cycles_total",
    "Flush cycles executed",
    ["trigger"],  # scheduled, manual, shutdown
)

ANALYTICS_FLUSH_DURATION = Histogram(
    "analytics_flush_duration_seconds",
    "Duration of a flush cycle",
)

ANALYTICS_ACTIVE_SESSIONS = Gauge(
    "analytics_active_sessions",
    "Sessions currently held in the working set",
)
