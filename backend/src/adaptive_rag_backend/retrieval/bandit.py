"""Thompson Sampling bandit over retrieval parameter sets.

Each query cluster keeps a Beta(alpha, beta) posterior per arm of a small
fixed menu. Selection draws one sample per arm and takes the largest;
verdicts on the resulting answer count as successes (alpha) or failures
(beta) for the arm that produced it.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from threading import Lock
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np
import structlog

from ..feedback.models import Verdict, VerdictEvent
from ..observability.metrics import (
    record_bandit_selection,
    record_bandit_unattributed,
    record_bandit_update,
)
from .clustering import DEFAULT_CLUSTER, HashClusterer, QueryClusterer
from .types import RetrievalParams

if TYPE_CHECKING:
    from ..feedback.bus import RewardBus, Subscription

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Arm:
    """One candidate retrieval configuration."""

    id: str
    params: RetrievalParams


@dataclass(frozen=True)
class BetaPosterior:
    """Beta(alpha, beta) belief over an arm's success rate."""

    alpha: float = 1.0
    beta: float = 1.0

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def observations(self) -> int:
        return int(self.alpha + self.beta - 2)

    def rewarded(self, success: bool) -> "BetaPosterior":
        if success:
            return replace(self, alpha=self.alpha + 1)
        return replace(self, beta=self.beta + 1)


@dataclass(frozen=True)
class ArmChoice:
    cluster: str
    arm: Arm

    @property
    def params(self) -> RetrievalParams:
        return self.arm.params


@dataclass(frozen=True)
class ArmAssignment:
    cluster: str
    arm_id: str


DEFAULT_ARMS: tuple[Arm, ...] = (
    Arm("k4_l0.7_s0.20", RetrievalParams(top_k=4, mmr_lambda=0.7, min_score=0.20)),
    Arm("k5_l0.9_s0.10", RetrievalParams(top_k=5, mmr_lambda=0.9, min_score=0.10)),
    Arm("k6_l0.7_s0.15", RetrievalParams(top_k=6, mmr_lambda=0.7, min_score=0.15)),
    Arm("k8_l0.5_s0.15", RetrievalParams(top_k=8, mmr_lambda=0.5, min_score=0.15)),
)


class ParamBandit:
    """Per-cluster Thompson Sampling over a fixed arm menu.

    All posteriors and the query -> arm assignments sit behind one lock;
    each posterior update is a single locked read-modify-write, so
    concurrent up/down verdicts commute.

    Example:
        bandit = ParamBandit(seed=42)
        choice = bandit.choose_params("what is mmr?", query_id="q-1")
        results = await retriever.retrieve(query, choice.params, choice.params.top_k)
        ...
        bandit.update("q-1", Verdict.UP)
    """

    def __init__(
        self,
        arms: Sequence[Arm] = DEFAULT_ARMS,
        clusterer: Optional[QueryClusterer] = None,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
        max_assignments: Optional[int] = None,
    ) -> None:
        """Initialize the bandit.

        Args:
            arms: Fixed arm menu; ids must be unique
            clusterer: Maps a query to its cluster id (HashClusterer by default)
            rng: Random generator used for posterior sampling
            seed: Seed for a fresh generator when rng is not given
            max_assignments: Bound on remembered query -> arm assignments
                (None keeps every assignment)
        """
        if not arms:
            raise ValueError("ParamBandit requires at least one arm")
        ids = [arm.id for arm in arms]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Arm ids must be unique, got {ids}")
        if max_assignments is not None and max_assignments < 1:
            raise ValueError("max_assignments must be >= 1 when set")

        self._arms: tuple[Arm, ...] = tuple(arms)
        self._arm_index = {arm.id: index for index, arm in enumerate(self._arms)}
        self._clusterer = clusterer or HashClusterer()
        self._rng = rng if rng is not None else np.random.default_rng(seed)
        self._max_assignments = max_assignments
        self._lock = Lock()
        self._table: dict[str, list[BetaPosterior]] = {}
        self._assignments: OrderedDict[str, ArmAssignment] = OrderedDict()
        self._subscription: Optional["Subscription"] = None
        self._ensure_cluster(DEFAULT_CLUSTER)

    @property
    def arms(self) -> tuple[Arm, ...]:
        return self._arms

    def choose_params(self, query: str, query_id: Optional[str] = None) -> ArmChoice:
        """Pick retrieval parameters for a query by Thompson Sampling.

        Args:
            query: The incoming query text
            query_id: When given, the choice is remembered so a later
                verdict on this query can be attributed to the arm

        Returns:
            ArmChoice with the query's cluster and the selected arm
        """
        cluster = self._clusterer.cluster_id(query)
        with self._lock:
            posteriors = self._ensure_cluster(cluster)
            alphas = np.fromiter((p.alpha for p in posteriors), dtype=float)
            betas = np.fromiter((p.beta for p in posteriors), dtype=float)
            samples = self._rng.beta(alphas, betas)
            # argmax returns the first maximum, so ties go to the lowest index.
            arm = self._arms[int(np.argmax(samples))]
            if query_id:
                self._record_assignment(query_id, ArmAssignment(cluster, arm.id))

        record_bandit_selection(arm.id)
        logger.debug(
            "bandit_arm_selected",
            cluster=cluster,
            arm_id=arm.id,
            query_id=query_id,
            top_k=arm.params.top_k,
        )
        return ArmChoice(cluster=cluster, arm=arm)

    def update(self, query_id: str, verdict: Verdict) -> bool:
        """Credit a verdict to the arm recorded for ``query_id``.

        The assignment is kept, so repeated verdicts for one query apply
        repeated updates.

        Returns:
            True if the verdict was attributed, False if no arm was recorded
        """
        verdict = Verdict(verdict)
        with self._lock:
            assignment = self._assignments.get(query_id)
            if assignment is None:
                attributed = None
            else:
                attributed = self._apply(assignment.cluster, assignment.arm_id, verdict.is_positive)

        if assignment is None:
            record_bandit_unattributed()
            logger.debug("bandit_verdict_unattributed", query_id=query_id)
            return False

        record_bandit_update(assignment.arm_id, verdict.value)
        logger.info(
            "bandit_arm_updated",
            query_id=query_id,
            cluster=assignment.cluster,
            arm_id=assignment.arm_id,
            verdict=verdict.value,
            alpha=attributed.alpha,
            beta=attributed.beta,
        )
        return True

    def update_arm(self, cluster: str, arm_id: str, reward: bool) -> BetaPosterior:
        """Apply one success or failure to an arm directly."""
        if arm_id not in self._arm_index:
            raise ValueError(f"Unknown arm id: {arm_id}")
        with self._lock:
            self._ensure_cluster(cluster)
            posterior = self._apply(cluster, arm_id, reward)
        record_bandit_update(arm_id, Verdict.UP.value if reward else Verdict.DOWN.value)
        return posterior

    async def handle_verdict(self, event: VerdictEvent) -> None:
        """Reward bus handler."""
        self.update(event.query_id, event.verdict)

    def attach(self, bus: "RewardBus") -> "Subscription":
        """Subscribe this bandit to verdicts on ``bus``."""
        if self._subscription is not None and self._subscription.active:
            return self._subscription
        self._subscription = bus.subscribe(self.handle_verdict, name="param_bandit")
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def state(self, cluster: str) -> dict[str, BetaPosterior]:
        """Snapshot of a cluster's posteriors keyed by arm id (empty if unseen)."""
        with self._lock:
            posteriors = list(self._table.get(cluster, ()))
        return {arm.id: posterior for arm, posterior in zip(self._arms, posteriors)}

    def clusters(self) -> list[str]:
        with self._lock:
            return sorted(self._table)

    def assignment(self, query_id: str) -> Optional[ArmAssignment]:
        with self._lock:
            return self._assignments.get(query_id)

    @property
    def assignment_count(self) -> int:
        return len(self._assignments)

    def _ensure_cluster(self, cluster: str) -> list[BetaPosterior]:
        posteriors = self._table.get(cluster)
        if posteriors is None:
            posteriors = [BetaPosterior() for _ in self._arms]
            self._table[cluster] = posteriors
        return posteriors

    def _apply(self, cluster: str, arm_id: str, success: bool) -> BetaPosterior:
        index = self._arm_index[arm_id]
        posteriors = self._table[cluster]
        posteriors[index] = posteriors[index].rewarded(success)
        return posteriors[index]

    def _record_assignment(self, query_id: str, assignment: ArmAssignment) -> None:
        self._assignments[query_id] = assignment
        self._assignments.move_to_end(query_id)
        if self._max_assignments is not None:
            while len(self._assignments) > self._max_assignments:
                self._assignments.popitem(last=False)
