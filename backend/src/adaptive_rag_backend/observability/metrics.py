"""Prometheus metric definitions for the adaptive retrieval feedback loop.

This module defines counters, histograms, and gauges covering the three
moving parts of the loop: verdict distribution on the reward bus, arm
selection and learning in the parameter bandit, and hits, promotions and
punishments in the semantic answer cache.

Arm and subscriber labels come from a small fixed set configured at
startup, so label cardinality stays bounded.
"""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    REGISTRY,
)

# Default registry (can be overridden for testing)
_registry: CollectorRegistry = REGISTRY


def get_metrics_registry() -> CollectorRegistry:
    """Get the current metrics registry.

    Returns:
        The CollectorRegistry used for all metrics
    """
    return _registry


# =============================================================================
# Reward Bus Metrics
# =============================================================================

VERDICTS_PUBLISHED_TOTAL = Counter(
    "verdicts_published_total",
    "Total number of verdict events published on the reward bus",
    labelnames=["verdict"],
    registry=_registry,
)
"""Counter for published verdicts.

Labels:
    verdict: up|down
"""

REWARD_BUS_HANDLER_FAILURES_TOTAL = Counter(
    "reward_bus_handler_failures_total",
    "Total number of subscriber handler invocations that raised",
    labelnames=["subscriber"],
    registry=_registry,
)
"""Counter for isolated subscriber faults.

Labels:
    subscriber: Subscription name
"""

REWARD_BUS_EVENTS_DROPPED_TOTAL = Counter(
    "reward_bus_events_dropped_total",
    "Total number of events dropped because a subscriber queue was full",
    labelnames=["subscriber"],
    registry=_registry,
)
"""Counter for events dropped on bounded subscriber queues.

Labels:
    subscriber: Subscription name
"""

DOC_FEEDBACK_PUBLISHED_TOTAL = Counter(
    "doc_feedback_published_total",
    "Total number of document-level feedback events published on the reward bus",
    labelnames=["verdict", "reason"],
    registry=_registry,
)
"""Counter for published document feedback.

Labels:
    verdict: up|down
    reason: Helpful|Not relevant|Unknown
"""

# =============================================================================
# Parameter Bandit Metrics
# =============================================================================

BANDIT_SELECTIONS_TOTAL = Counter(
    "bandit_selections_total",
    "Total number of retrieval parameter arms selected",
    labelnames=["arm"],
    registry=_registry,
)
"""Counter for Thompson Sampling selections.

Labels:
    arm: Arm identifier (e.g. k4_l0.7_s0.20)
"""

BANDIT_UPDATES_TOTAL = Counter(
    "bandit_updates_total",
    "Total number of arm posterior updates",
    labelnames=["arm", "verdict"],
    registry=_registry,
)
"""Counter for posterior updates.

Labels:
    arm: Arm identifier
    verdict: up|down
"""

BANDIT_UNATTRIBUTED_VERDICTS_TOTAL = Counter(
    "bandit_unattributed_verdicts_total",
    "Total number of verdicts with no recorded arm assignment",
    registry=_registry,
)
"""Counter for verdicts dropped because no arm produced the answer."""

# =============================================================================
# Semantic Answer Cache Metrics
# =============================================================================

ANSWER_CACHE_LOOKUPS_TOTAL = Counter(
    "answer_cache_lookups_total",
    "Total number of semantic answer cache lookups",
    labelnames=["result"],
    registry=_registry,
)
"""Counter for cache lookups.

Labels:
    result: hit|empty|no_sources|below_threshold
"""

ANSWER_CACHE_PROMOTIONS_TOTAL = Counter(
    "answer_cache_promotions_total",
    "Total number of cache entries created from positive verdicts",
    registry=_registry,
)

ANSWER_CACHE_PUNISHMENTS_TOTAL = Counter(
    "answer_cache_punishments_total",
    "Total number of cache entries whose TTL was cut by negative verdicts",
    registry=_registry,
)

# Similarity buckets: 0-1 range in 0.1 increments
SIMILARITY_BUCKETS = (0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0)

ANSWER_CACHE_HIT_SIMILARITY = Histogram(
    "answer_cache_hit_similarity",
    "Jaccard source overlap of served cache hits",
    buckets=SIMILARITY_BUCKETS,
    registry=_registry,
)

ANSWER_CACHE_ENTRIES = Gauge(
    "answer_cache_entries",
    "Current number of entries held by the semantic answer cache",
    registry=_registry,
)
"""Gauge for cache size (includes entries not yet purged after expiry)."""


# =============================================================================
# Helper Functions
# =============================================================================


def record_verdict_published(verdict: str) -> None:
    """Record a verdict published on the bus.

    Args:
        verdict: up|down
    """
    VERDICTS_PUBLISHED_TOTAL.labels(verdict=verdict).inc()


def record_bus_handler_failure(subscriber: str) -> None:
    """Record a subscriber handler that raised.

    Args:
        subscriber: Subscription name
    """
    REWARD_BUS_HANDLER_FAILURES_TOTAL.labels(subscriber=subscriber).inc()


def record_bus_event_dropped(subscriber: str) -> None:
    """Record an event dropped on a full subscriber queue."""
    REWARD_BUS_EVENTS_DROPPED_TOTAL.labels(subscriber=subscriber).inc()


def record_doc_feedback_published(verdict: str, reason: str) -> None:
    """Record a document feedback event published on the bus."""
    DOC_FEEDBACK_PUBLISHED_TOTAL.labels(verdict=verdict, reason=reason).inc()


def record_bandit_selection(arm_id: str) -> None:
    """Record an arm chosen by Thompson Sampling.

    Args:
        arm_id: Arm identifier
    """
    BANDIT_SELECTIONS_TOTAL.labels(arm=arm_id).inc()


def record_bandit_update(arm_id: str, verdict: str) -> None:
    """Record an arm posterior update.

    Args:
        arm_id: Arm identifier
        verdict: up|down
    """
    BANDIT_UPDATES_TOTAL.labels(arm=arm_id, verdict=verdict).inc()


def record_bandit_unattributed() -> None:
    """Record a verdict that could not be attributed to an arm."""
    BANDIT_UNATTRIBUTED_VERDICTS_TOTAL.inc()


def record_cache_lookup(result: str, similarity: float | None = None) -> None:
    """Record a semantic cache lookup outcome.

    Args:
        result: hit|empty|no_sources|below_threshold
        similarity: Source overlap of the served entry (hits only)
    """
    ANSWER_CACHE_LOOKUPS_TOTAL.labels(result=result).inc()
    if similarity is not None:
        ANSWER_CACHE_HIT_SIMILARITY.observe(similarity)


def record_cache_promotion() -> None:
    """Record a cache entry created from a positive verdict."""
    ANSWER_CACHE_PROMOTIONS_TOTAL.inc()


def record_cache_punishment() -> None:
    """Record a cache entry shortened by a negative verdict."""
    ANSWER_CACHE_PUNISHMENTS_TOTAL.inc()


def set_cache_size(size: int) -> None:
    """Set the current cache size gauge."""
    ANSWER_CACHE_ENTRIES.set(size)
