"""Adaptive retrieval loop: explicit wiring of bus, bandit, cache and stores.

The loop is constructed once at startup, started inside the running event
loop (subscribing the bandit and the cache to the reward bus), and stopped
at shutdown after draining pending verdicts. Callers receive it by
reference; nothing is looked up through module-level globals.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Iterable, Optional, Union
from uuid import uuid4

import structlog

from .config import Settings
from .core.errors import FeedbackDisabledError, ValidationError
from .feedback.bus import RewardBus
from .feedback.models import DocFeedbackEvent, FeedbackReason, Verdict, VerdictEvent
from .retrieval.answer_cache import CacheConfig, CacheHit, SemanticAnswerCache
from .retrieval.bandit import ArmChoice, ParamBandit
from .retrieval.bandit_retriever import BanditRetriever
from .retrieval.clustering import DEFAULT_CLUSTER, HashClusterer
from .retrieval.context_store import InMemoryContextStore
from .retrieval.types import (
    AnswerContext,
    Retriever,
    SourceFragment,
    WritableContextStore,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RetrievalOutcome:
    """Result of preparing a query for generation.

    Attributes:
        query_id: Identifier tying later verdicts to this query
        choice: Bandit cluster and arm used for retrieval
        sources: Fresh sources retrieved with the arm's parameters
        cached: Cached answer corroborated by the fresh sources, if any
    """

    query_id: str
    choice: ArmChoice
    sources: tuple[SourceFragment, ...]
    cached: Optional[CacheHit] = None

    @property
    def from_cache(self) -> bool:
        return self.cached is not None


class AdaptiveRetrievalLoop:
    """Feedback-driven retrieval: bandit-chosen parameters plus answer cache.

    When ``enabled`` is False the loop degrades to fixed parameters (the
    first arm), never serves from cache, and rejects verdicts.

    Example:
        loop = AdaptiveRetrievalLoop.build(settings, retriever)
        await loop.start()

        outcome = await loop.prepare("how does mmr work?")
        if not outcome.from_cache:
            answer = await generate(outcome.sources)
            await loop.register_answer(outcome.query_id, question, answer, outcome.sources)

        loop.publish_verdict(outcome.query_id, Verdict.UP)
        await loop.stop()
    """

    def __init__(
        self,
        bus: RewardBus,
        bandit: ParamBandit,
        cache: SemanticAnswerCache,
        context_store: WritableContextStore,
        retriever: Retriever,
        enabled: bool = True,
    ) -> None:
        self._bus = bus
        self._bandit = bandit
        self._cache = cache
        self._context_store = context_store
        self._bandit_retriever = BanditRetriever(bandit, retriever)
        self._enabled = enabled
        self._started = False

    @classmethod
    def build(
        cls,
        settings: Settings,
        retriever: Retriever,
        context_store: Optional[WritableContextStore] = None,
    ) -> "AdaptiveRetrievalLoop":
        """Construct the loop and its services from settings."""
        store = context_store or InMemoryContextStore(
            max_entries=settings.context_store_max_entries
        )
        bandit = ParamBandit(
            arms=settings.bandit_arms,
            clusterer=HashClusterer(buckets=settings.bandit_cluster_buckets),
            seed=settings.bandit_seed,
            max_assignments=settings.bandit_max_assignments,
        )
        boost = settings.cache_boost_ttl_seconds
        cache = SemanticAnswerCache(
            context_store=store,
            retriever=retriever,
            config=CacheConfig(
                default_ttl=timedelta(seconds=settings.cache_default_ttl_seconds),
                boost_ttl=timedelta(seconds=boost) if boost else None,
                punish_ttl=timedelta(seconds=settings.cache_punish_ttl_seconds),
                min_source_overlap=settings.cache_min_source_overlap,
                lookup_top_k=settings.cache_lookup_top_k,
                max_entries=settings.cache_max_entries,
            ),
            default_params=settings.bandit_arms[0].params,
        )
        return cls(
            bus=RewardBus(max_queue_size=settings.reward_bus_max_queue_size),
            bandit=bandit,
            cache=cache,
            context_store=store,
            retriever=retriever,
            enabled=settings.feedback_loop_enabled,
        )

    @property
    def bus(self) -> RewardBus:
        return self._bus

    @property
    def bandit(self) -> ParamBandit:
        return self._bandit

    @property
    def cache(self) -> SemanticAnswerCache:
        return self._cache

    @property
    def context_store(self) -> WritableContextStore:
        return self._context_store

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Subscribe the bandit and the cache to the reward bus."""
        if self._started:
            return
        if self._enabled:
            self._bandit.attach(self._bus)
            self._cache.attach(self._bus)
        self._started = True
        logger.info(
            "adaptive_retrieval_loop_started",
            enabled=self._enabled,
            arms=[arm.id for arm in self._bandit.arms],
        )

    async def stop(self, drain: bool = True) -> None:
        """Drain pending verdicts and shut down the bus."""
        if not self._started:
            return
        await self._bus.close(drain=drain)
        self._started = False
        logger.info("adaptive_retrieval_loop_stopped", drained=drain)

    async def prepare(self, query: str, query_id: Optional[str] = None) -> RetrievalOutcome:
        """Choose parameters, retrieve, and consult the answer cache.

        One retrieval serves both as generation context and as the
        evidence that a cached answer must be corroborated by.
        """
        query_id = query_id or str(uuid4())
        if not self._enabled:
            choice = ArmChoice(cluster=DEFAULT_CLUSTER, arm=self._bandit.arms[0])
            retrieval = await self._bandit_retriever.retrieve_with(query, query_id, choice)
            return RetrievalOutcome(
                query_id=query_id,
                choice=choice,
                sources=retrieval.sources,
            )

        retrieval = await self._bandit_retriever.retrieve(query, query_id)
        cached = self._cache.lookup_with_sources(retrieval.sources)
        return RetrievalOutcome(
            query_id=query_id,
            choice=retrieval.choice,
            sources=retrieval.sources,
            cached=cached,
        )

    async def register_answer(
        self,
        query_id: str,
        question: str,
        answer: str,
        sources: Iterable[SourceFragment],
    ) -> AnswerContext:
        """Record a generated answer so a later verdict can promote it."""
        return await self._context_store.put(query_id, question, answer, sources)

    def publish_verdict(
        self,
        query_id: str,
        verdict: Union[Verdict, str],
        tags: Iterable[str] = (),
    ) -> VerdictEvent:
        """Publish a user verdict for the bandit and the cache to consume.

        Raises:
            FeedbackDisabledError: If the loop runs with feedback switched off
            ValidationError: If the query id or verdict is malformed
        """
        if not self._enabled:
            raise FeedbackDisabledError()
        try:
            return self._bus.publish(query_id, verdict, tags)
        except ValueError as e:
            raise ValidationError(str(e), details={"query_id": query_id}) from e

    def publish_doc_feedback(
        self,
        fragment: SourceFragment,
        verdict: Union[Verdict, str],
        reason: Union[FeedbackReason, str] = FeedbackReason.UNKNOWN,
        query_id: Optional[str] = None,
    ) -> DocFeedbackEvent:
        """Publish a verdict on a single source fragment.

        Raises:
            FeedbackDisabledError: If the loop runs with feedback switched off
            ValidationError: If the verdict, reason or query id is malformed
        """
        if not self._enabled:
            raise FeedbackDisabledError()
        try:
            return self._bus.publish_doc_feedback(fragment, verdict, reason, query_id)
        except ValueError as e:
            raise ValidationError(str(e), details={"query_id": query_id}) from e
