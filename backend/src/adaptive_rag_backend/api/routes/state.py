"""Read-only views of bandit posteriors and cache occupancy."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from ...orchestrator import AdaptiveRetrievalLoop
from ...retrieval.clustering import DEFAULT_CLUSTER
from ..utils import get_adaptive_loop, success_response

router = APIRouter(tags=["state"])


@router.get("/bandit/state")
async def get_bandit_state(
    cluster: Optional[str] = Query(None, max_length=128),
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Posterior per arm for one cluster, plus the list of known clusters."""
    bandit = loop.bandit
    target = cluster or DEFAULT_CLUSTER
    posteriors = bandit.state(target)
    return success_response(
        {
            "cluster": target,
            "clusters": bandit.clusters(),
            "assignments": bandit.assignment_count,
            "arms": [
                {
                    "arm_id": arm_id,
                    "alpha": posterior.alpha,
                    "beta": posterior.beta,
                    "mean": round(posterior.mean, 4),
                }
                for arm_id, posterior in posteriors.items()
            ],
        }
    )


@router.get("/cache/stats")
async def get_cache_stats(
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Entry counts for the semantic answer cache."""
    stats = loop.cache.stats()
    return success_response(
        {
            "entries": stats.entries,
            "visible_entries": stats.visible_entries,
            "mapped_queries": stats.mapped_queries,
            "min_source_overlap": loop.cache.config.min_source_overlap,
        }
    )
