"""Semantic answer cache gated by source overlap and TTL.

Entries are only created from positively rated answers. A lookup is served
from the cache when the sources a fresh retrieval returns for the incoming
question overlap (Jaccard) enough with the sources a stored answer was
built from, so a cached answer is never trusted without corroborating
evidence from the current index.

State (entries plus the query -> entries mapping) is an immutable snapshot
replaced wholesale by writers. Readers grab the current snapshot without
locking; writers serialize on a lock and publish a new snapshot, so no
reader ever sees a half-applied update.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import TYPE_CHECKING, AbstractSet, Callable, Iterable, Mapping, Optional, Sequence

import structlog

from ..feedback.models import Verdict, VerdictEvent
from ..observability.metrics import (
    record_cache_lookup,
    record_cache_promotion,
    record_cache_punishment,
    set_cache_size,
)
from .bandit import DEFAULT_ARMS
from .types import AnswerContext, ContextStore, RetrievalParams, Retriever, SourceFragment

if TYPE_CHECKING:
    from ..feedback.bus import RewardBus, Subscription

logger = structlog.get_logger(__name__)

# Defaults
DEFAULT_CACHE_TTL = timedelta(days=7)
DEFAULT_CACHE_BOOST_TTL = timedelta(days=30)
DEFAULT_CACHE_PUNISH_TTL = timedelta(hours=1)
DEFAULT_MIN_SOURCE_OVERLAP = 0.4
DEFAULT_LOOKUP_TOP_K = 6

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def jaccard_similarity(a: AbstractSet[str], b: AbstractSet[str]) -> float:
    """|a & b| / |a | b|, with two empty sets scoring 0.0."""
    union = len(a | b)
    if union == 0:
        return 0.0
    return len(a & b) / union


@dataclass(frozen=True)
class CacheConfig:
    """Configuration for the semantic answer cache.

    Attributes:
        default_ttl: Lifetime of a newly promoted entry
        boost_ttl: Lifetime used when a query that was already promoted is
            promoted again (None disables boosting)
        punish_ttl: Remaining lifetime imposed by a negative verdict
        min_source_overlap: Jaccard threshold for serving a hit
        lookup_top_k: Fresh sources requested per lookup
        max_entries: Bound on stored entries, oldest evicted first
            (None keeps every entry until it expires)
    """

    default_ttl: timedelta = DEFAULT_CACHE_TTL
    boost_ttl: Optional[timedelta] = DEFAULT_CACHE_BOOST_TTL
    punish_ttl: timedelta = DEFAULT_CACHE_PUNISH_TTL
    min_source_overlap: float = DEFAULT_MIN_SOURCE_OVERLAP
    lookup_top_k: int = DEFAULT_LOOKUP_TOP_K
    max_entries: Optional[int] = None

    def __post_init__(self) -> None:
        """Validate TTL ordering and thresholds."""
        zero = timedelta(0)
        if self.default_ttl <= zero:
            raise ValueError("default_ttl must be positive")
        if self.punish_ttl <= zero:
            raise ValueError("punish_ttl must be positive")
        if self.punish_ttl >= self.default_ttl:
            raise ValueError(
                f"punish_ttl ({self.punish_ttl}) must be shorter than "
                f"default_ttl ({self.default_ttl})"
            )
        if self.boost_ttl is not None and self.boost_ttl < self.default_ttl:
            raise ValueError(
                f"boost_ttl ({self.boost_ttl}) must not be shorter than "
                f"default_ttl ({self.default_ttl})"
            )
        if not 0.0 <= self.min_source_overlap <= 1.0:
            raise ValueError(
                f"min_source_overlap must be between 0 and 1, got {self.min_source_overlap}"
            )
        if self.lookup_top_k < 1:
            raise ValueError("lookup_top_k must be >= 1")
        if self.max_entries is not None and self.max_entries < 1:
            raise ValueError("max_entries must be >= 1 when set")


@dataclass(frozen=True)
class CacheEntry:
    """A cached answer and the sources it was built from."""

    id: str
    question: str
    answer: str
    sources: tuple[SourceFragment, ...]
    created_at: datetime
    expires_at: datetime
    query_id: Optional[str] = None
    source_keys: frozenset[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("CacheEntry expires_at must be after created_at")
        object.__setattr__(
            self, "source_keys", frozenset(source.identity for source in self.sources)
        )

    def is_visible(self, now: datetime) -> bool:
        return self.expires_at > now

    def remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))


@dataclass(frozen=True)
class CacheHit:
    entry_id: str
    answer: str
    sources: tuple[SourceFragment, ...]
    similarity: float


@dataclass(frozen=True)
class CacheStats:
    entries: int
    visible_entries: int
    mapped_queries: int


@dataclass(frozen=True)
class _CacheState:
    entries: Mapping[str, CacheEntry]
    query_to_entry: Mapping[str, tuple[str, ...]]


_EMPTY_STATE = _CacheState(entries={}, query_to_entry={})


class SemanticAnswerCache:
    """Answer cache keyed by source overlap, promoted and punished by verdicts.

    Example:
        cache = SemanticAnswerCache(context_store, retriever)
        cache.attach(bus)

        hit = await cache.lookup("how do arms learn?")
        if hit is None:
            ...  # run generation, register the answer with the context store
    """

    def __init__(
        self,
        context_store: ContextStore,
        retriever: Retriever,
        config: Optional[CacheConfig] = None,
        clock: Optional[Clock] = None,
        default_params: Optional[RetrievalParams] = None,
    ) -> None:
        """Initialize the cache.

        Args:
            context_store: Source of question/answer/sources on promotion
            retriever: Fresh retrieval used to corroborate lookups
            config: TTLs, overlap threshold, and bounds
            clock: Source of the current time (UTC now by default)
            default_params: Retrieval parameters used when a lookup
                supplies none
        """
        self._context_store = context_store
        self._retriever = retriever
        self._config = config or CacheConfig()
        self._clock = clock or _utcnow
        self._default_params = default_params or DEFAULT_ARMS[0].params
        self._state: _CacheState = _EMPTY_STATE
        self._write_lock = Lock()
        self._subscription: Optional["Subscription"] = None

    @property
    def config(self) -> CacheConfig:
        return self._config

    # ==================== Lookup ====================

    async def lookup(
        self,
        question: str,
        params: Optional[RetrievalParams] = None,
        top_k: Optional[int] = None,
    ) -> Optional[CacheHit]:
        """Serve a cached answer if fresh evidence corroborates one.

        Args:
            question: The incoming question
            params: Retrieval parameters for the fresh retrieval
            top_k: Number of fresh sources to request

        Returns:
            CacheHit for the best qualifying entry, or None on a miss
        """
        state = self._state
        now = self._clock()
        if not any(entry.is_visible(now) for entry in state.entries.values()):
            record_cache_lookup("empty")
            return None

        try:
            fresh = await self._retriever.retrieve(
                question,
                params or self._default_params,
                top_k or self._config.lookup_top_k,
            )
        except Exception as e:
            logger.warning(
                "answer_cache_fresh_retrieval_failed",
                question=question[:50],
                error=str(e),
            )
            fresh = []
        return self._match(state, fresh, now)

    def lookup_with_sources(self, fresh_sources: Sequence[SourceFragment]) -> Optional[CacheHit]:
        """Same decision as ``lookup`` using sources the caller already retrieved."""
        state = self._state
        now = self._clock()
        if not any(entry.is_visible(now) for entry in state.entries.values()):
            record_cache_lookup("empty")
            return None
        return self._match(state, fresh_sources, now)

    def _match(
        self,
        state: _CacheState,
        fresh_sources: Iterable[SourceFragment],
        now: datetime,
    ) -> Optional[CacheHit]:
        fresh_keys = frozenset(source.identity for source in fresh_sources)
        if not fresh_keys:
            record_cache_lookup("no_sources")
            logger.debug("answer_cache_miss", reason="no_fresh_sources")
            return None

        best: Optional[CacheEntry] = None
        best_similarity = -1.0
        for entry in state.entries.values():
            if not entry.is_visible(now):
                continue
            similarity = jaccard_similarity(fresh_keys, entry.source_keys)
            if similarity < self._config.min_source_overlap:
                continue
            if (
                best is None
                or similarity > best_similarity
                or (similarity == best_similarity and entry.created_at > best.created_at)
            ):
                best = entry
                best_similarity = similarity

        if best is None:
            record_cache_lookup("below_threshold")
            logger.debug(
                "answer_cache_miss",
                reason="below_threshold",
                fresh_sources=len(fresh_keys),
            )
            return None

        record_cache_lookup("hit", best_similarity)
        logger.info(
            "answer_cache_hit",
            entry_id=best.id,
            similarity=round(best_similarity, 3),
            origin_query_id=best.query_id,
        )
        return CacheHit(
            entry_id=best.id,
            answer=best.answer,
            sources=best.sources,
            similarity=best_similarity,
        )

    # ==================== Verdict Handling ====================

    async def on_verdict(self, event: VerdictEvent) -> None:
        """Promote on ``up``, punish on ``down``."""
        if event.verdict is Verdict.UP:
            context = await self._context_store.get(event.query_id)
            if context is None:
                logger.debug("answer_cache_promotion_skipped", query_id=event.query_id)
                return
            self.put_from_context(context)
        else:
            self.punish(event.query_id)

    def put_from_context(
        self,
        context: AnswerContext,
        ttl: Optional[timedelta] = None,
    ) -> CacheEntry:
        """Create a new entry from an answer context.

        Promotion never merges with existing entries; overlapping duplicates
        are tolerated.

        Args:
            context: Question, answer and sources to cache
            ttl: Explicit lifetime; by default ``default_ttl``, or
                ``boost_ttl`` when this query was promoted before

        Returns:
            The created entry
        """
        with self._write_lock:
            state = self._state
            now = self._clock()
            boosted = False
            if ttl is None:
                if self._config.boost_ttl is not None and context.query_id in state.query_to_entry:
                    ttl = self._config.boost_ttl
                    boosted = True
                else:
                    ttl = self._config.default_ttl
            entry = CacheEntry(
                id=str(uuid.uuid4()),
                question=context.question,
                answer=context.answer,
                sources=tuple(context.sources),
                created_at=now,
                expires_at=now + ttl,
                query_id=context.query_id,
            )
            entries = {
                entry_id: existing
                for entry_id, existing in state.entries.items()
                if existing.is_visible(now)
            }
            entries[entry.id] = entry
            query_to_entry = dict(state.query_to_entry)
            query_to_entry[context.query_id] = (
                *query_to_entry.get(context.query_id, ()),
                entry.id,
            )
            self._state = self._bounded(entries, query_to_entry)
            size = len(self._state.entries)

        set_cache_size(size)
        record_cache_promotion()
        logger.info(
            "answer_cache_promoted",
            entry_id=entry.id,
            query_id=context.query_id,
            sources=len(entry.sources),
            ttl_seconds=ttl.total_seconds(),
            boosted=boosted,
        )
        return entry

    def punish(self, query_id: str) -> tuple[CacheEntry, ...]:
        """Cut the remaining lifetime of every entry promoted from ``query_id``.

        The new expiry is ``now + punish_ttl`` unless an entry would already
        expire sooner; a punishment never lengthens a lifetime.

        Returns:
            The updated entries, oldest first (empty if the query has none)
        """
        with self._write_lock:
            state = self._state
            targets = [
                state.entries[entry_id]
                for entry_id in state.query_to_entry.get(query_id, ())
                if entry_id in state.entries
            ]
            if targets:
                deadline = self._clock() + self._config.punish_ttl
                updated = tuple(
                    replace(entry, expires_at=min(entry.expires_at, deadline))
                    for entry in targets
                )
                entries = dict(state.entries)
                for entry in updated:
                    entries[entry.id] = entry
                self._state = _CacheState(entries=entries, query_to_entry=state.query_to_entry)
            else:
                updated = ()

        if not updated:
            logger.debug("answer_cache_punish_skipped", query_id=query_id)
            return ()

        record_cache_punishment()
        logger.info(
            "answer_cache_punished",
            entry_ids=[entry.id for entry in updated],
            query_id=query_id,
            expires_at=max(entry.expires_at for entry in updated).isoformat(),
        )
        return updated

    async def handle_verdict(self, event: VerdictEvent) -> None:
        """Reward bus handler."""
        await self.on_verdict(event)

    def attach(self, bus: "RewardBus") -> "Subscription":
        """Subscribe this cache to verdicts on ``bus``."""
        if self._subscription is not None and self._subscription.active:
            return self._subscription
        self._subscription = bus.subscribe(self.handle_verdict, name="semantic_answer_cache")
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    # ==================== Maintenance ====================

    def purge_expired(self) -> int:
        """Drop entries no longer visible to lookups.

        Returns:
            Number of entries removed
        """
        with self._write_lock:
            state = self._state
            now = self._clock()
            entries = {
                entry_id: entry
                for entry_id, entry in state.entries.items()
                if entry.is_visible(now)
            }
            removed = len(state.entries) - len(entries)
            if removed:
                self._state = _CacheState(
                    entries=entries,
                    query_to_entry=_live_mappings(state.query_to_entry, entries),
                )
            size = len(self._state.entries)
        set_cache_size(size)
        if removed:
            logger.info("answer_cache_purged", removed=removed)
        return removed

    def clear(self) -> None:
        with self._write_lock:
            self._state = _EMPTY_STATE
        set_cache_size(0)

    def entries(self) -> list[CacheEntry]:
        """Visible entries, oldest first."""
        now = self._clock()
        return [entry for entry in self._state.entries.values() if entry.is_visible(now)]

    def entry_for_query(self, query_id: str) -> Optional[CacheEntry]:
        """Newest entry promoted from ``query_id``."""
        entries = self.entries_for_query(query_id)
        return entries[-1] if entries else None

    def entries_for_query(self, query_id: str) -> list[CacheEntry]:
        """Every stored entry promoted from ``query_id``, oldest first."""
        state = self._state
        return [
            state.entries[entry_id]
            for entry_id in state.query_to_entry.get(query_id, ())
            if entry_id in state.entries
        ]

    def stats(self) -> CacheStats:
        state = self._state
        now = self._clock()
        return CacheStats(
            entries=len(state.entries),
            visible_entries=sum(1 for entry in state.entries.values() if entry.is_visible(now)),
            mapped_queries=len(state.query_to_entry),
        )

    def _bounded(
        self,
        entries: dict[str, CacheEntry],
        query_to_entry: dict[str, tuple[str, ...]],
    ) -> _CacheState:
        max_entries = self._config.max_entries
        if max_entries is not None and len(entries) > max_entries:
            # Insertion order is creation order.
            for entry_id in list(entries)[: len(entries) - max_entries]:
                del entries[entry_id]
        return _CacheState(
            entries=entries,
            query_to_entry=_live_mappings(query_to_entry, entries),
        )


def _live_mappings(
    query_to_entry: Mapping[str, tuple[str, ...]],
    entries: Mapping[str, CacheEntry],
) -> dict[str, tuple[str, ...]]:
    live: dict[str, tuple[str, ...]] = {}
    for query_id, entry_ids in query_to_entry.items():
        kept = tuple(entry_id for entry_id in entry_ids if entry_id in entries)
        if kept:
            live[query_id] = kept
    return live
