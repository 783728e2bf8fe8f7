"""Query clustering for per-cluster bandit statistics."""

from __future__ import annotations

import hashlib
import re
from typing import Protocol

DEFAULT_CLUSTER = "default"
DEFAULT_CLUSTER_BUCKETS = 16

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Lower-case, collapse whitespace runs, and trim."""
    return _WHITESPACE.sub(" ", query.lower()).strip()


class QueryClusterer(Protocol):
    def cluster_id(self, query: str) -> str:
        ...


class HashClusterer:
    """Buckets queries by a stable hash of their normalized text.

    Equivalent queries (case and spacing aside) always share a cluster,
    across processes and restarts.
    """

    def __init__(self, buckets: int = DEFAULT_CLUSTER_BUCKETS) -> None:
        if buckets < 1:
            raise ValueError("buckets must be >= 1")
        self.buckets = buckets

    def cluster_id(self, query: str) -> str:
        normalized = normalize_query(query)
        if not normalized:
            return DEFAULT_CLUSTER
        digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()
        bucket = int(digest[:8], 16) % self.buckets
        return f"qcluster-{bucket}"


class SingleClusterer:
    """Puts every query in one shared cluster."""

    def cluster_id(self, query: str) -> str:
        return DEFAULT_CLUSTER
