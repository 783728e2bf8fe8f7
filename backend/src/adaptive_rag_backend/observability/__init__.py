"""Observability package for Prometheus metrics and monitoring.

This package provides:
- Prometheus metric definitions for the reward bus, bandit, and answer cache
- Middleware for exposing /metrics endpoint
"""

from .metrics import (
    # Counters
    VERDICTS_PUBLISHED_TOTAL,
    REWARD_BUS_HANDLER_FAILURES_TOTAL,
    REWARD_BUS_EVENTS_DROPPED_TOTAL,
    DOC_FEEDBACK_PUBLISHED_TOTAL,
    BANDIT_SELECTIONS_TOTAL,
    BANDIT_UPDATES_TOTAL,
    BANDIT_UNATTRIBUTED_VERDICTS_TOTAL,
    ANSWER_CACHE_LOOKUPS_TOTAL,
    ANSWER_CACHE_PROMOTIONS_TOTAL,
    ANSWER_CACHE_PUNISHMENTS_TOTAL,
    # Histograms
    ANSWER_CACHE_HIT_SIMILARITY,
    # Gauges
    ANSWER_CACHE_ENTRIES,
    # Helper functions
    record_verdict_published,
    record_bus_handler_failure,
    record_bus_event_dropped,
    record_doc_feedback_published,
    record_bandit_selection,
    record_bandit_update,
    record_bandit_unattributed,
    record_cache_lookup,
    record_cache_promotion,
    record_cache_punishment,
    set_cache_size,
    get_metrics_registry,
)
from .middleware import (
    create_metrics_endpoint,
    MetricsConfig,
)

__all__ = [
    # Counters
    "VERDICTS_PUBLISHED_TOTAL",
    "REWARD_BUS_HANDLER_FAILURES_TOTAL",
    "REWARD_BUS_EVENTS_DROPPED_TOTAL",
    "DOC_FEEDBACK_PUBLISHED_TOTAL",
    "BANDIT_SELECTIONS_TOTAL",
    "BANDIT_UPDATES_TOTAL",
    "BANDIT_UNATTRIBUTED_VERDICTS_TOTAL",
    "ANSWER_CACHE_LOOKUPS_TOTAL",
    "ANSWER_CACHE_PROMOTIONS_TOTAL",
    "ANSWER_CACHE_PUNISHMENTS_TOTAL",
    # Histograms
    "ANSWER_CACHE_HIT_SIMILARITY",
    # Gauges
    "ANSWER_CACHE_ENTRIES",
    # Helper functions
    "record_verdict_published",
    "record_bus_handler_failure",
    "record_bus_event_dropped",
    "record_doc_feedback_published",
    "record_bandit_selection",
    "record_bandit_update",
    "record_bandit_unattributed",
    "record_cache_lookup",
    "record_cache_promotion",
    "record_cache_punishment",
    "set_cache_size",
    "get_metrics_registry",
    # Middleware
    "create_metrics_endpoint",
    "MetricsConfig",
]
