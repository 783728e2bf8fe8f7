"""Tests for the adaptive retrieval loop wiring."""

from datetime import timedelta

import pytest

from adaptive_rag_backend.config import load_settings
from adaptive_rag_backend.core.errors import FeedbackDisabledError, ValidationError
from adaptive_rag_backend.feedback import FeedbackReason, RewardBus, Verdict
from adaptive_rag_backend.orchestrator import AdaptiveRetrievalLoop
from adaptive_rag_backend.retrieval import (
    DEFAULT_ARMS,
    BetaPosterior,
    InMemoryContextStore,
    ParamBandit,
    SemanticAnswerCache,
    SingleClusterer,
)


def _loop(retriever, clock, enabled: bool = True) -> AdaptiveRetrievalLoop:
    store = InMemoryContextStore()
    return AdaptiveRetrievalLoop(
        bus=RewardBus(clock=clock),
        bandit=ParamBandit(clusterer=SingleClusterer(), seed=11),
        cache=SemanticAnswerCache(store, retriever, clock=clock),
        context_store=store,
        retriever=retriever,
        enabled=enabled,
    )


@pytest.mark.asyncio
async def test_feedback_flows_to_bandit_and_cache(static_retriever, clock, make_fragments) -> None:
    loop = _loop(static_retriever, clock)
    await loop.start()

    static_retriever.fragments = make_fragments("c1", "c2")
    first = await loop.prepare("How do arms learn?", query_id="q1")
    assert not first.from_cache
    assert [source.source_id for source in first.sources] == ["c1", "c2"]

    await loop.register_answer("q1", "How do arms learn?", "From verdicts.", first.sources)
    loop.publish_verdict("q1", Verdict.UP, tags=["helpful"])
    await loop.bus.join()

    posterior = loop.bandit.state(first.choice.cluster)[first.choice.arm.id]
    assert posterior == BetaPosterior(alpha=2.0, beta=1.0)
    assert loop.cache.entry_for_query("q1") is not None

    # A related question whose fresh sources overlap 2/3 with the cached ones.
    static_retriever.fragments = make_fragments("c1", "c2", "c5")
    second = await loop.prepare("How does the bandit learn?", query_id="q2")
    assert second.from_cache
    assert second.cached.answer == "From verdicts."
    assert second.cached.similarity == pytest.approx(2 / 3)
    # One retrieval serves both generation context and corroboration.
    assert len(static_retriever.calls) == 2

    loop.publish_verdict("q1", "down")
    await loop.bus.join()
    entry = loop.cache.entry_for_query("q1")
    assert entry.expires_at == clock.now + timedelta(hours=1)

    await loop.stop()
    assert loop.bus.closed
    assert not loop.started


@pytest.mark.asyncio
async def test_prepare_assigns_query_id(static_retriever, clock) -> None:
    loop = _loop(static_retriever, clock)

    outcome = await loop.prepare("question")

    assert outcome.query_id
    assert loop.bandit.assignment(outcome.query_id) is not None


@pytest.mark.asyncio
async def test_prepare_survives_retriever_failure(failing_retriever, clock) -> None:
    loop = _loop(failing_retriever, clock)

    outcome = await loop.prepare("question", query_id="q1")

    assert outcome.sources == ()
    assert outcome.cached is None


@pytest.mark.asyncio
async def test_disabled_loop_uses_fixed_params(static_retriever, clock, make_fragments) -> None:
    loop = _loop(static_retriever, clock, enabled=False)
    await loop.start()
    static_retriever.fragments = make_fragments("c1")

    outcome = await loop.prepare("question", query_id="q1")

    assert outcome.choice.arm == DEFAULT_ARMS[0]
    assert outcome.cached is None
    assert static_retriever.calls[0][2] == DEFAULT_ARMS[0].params.top_k
    assert loop.bus.subscriber_count == 0
    with pytest.raises(FeedbackDisabledError):
        loop.publish_verdict("q1", Verdict.UP)
    await loop.stop()


@pytest.mark.asyncio
async def test_malformed_verdict_raises_validation_error(static_retriever, clock) -> None:
    loop = _loop(static_retriever, clock)
    await loop.start()

    with pytest.raises(ValidationError):
        loop.publish_verdict("", Verdict.UP)
    with pytest.raises(ValidationError):
        loop.publish_verdict("q1", "sideways")
    await loop.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent(static_retriever, clock) -> None:
    loop = _loop(static_retriever, clock)
    await loop.start()
    await loop.start()

    assert loop.bus.subscriber_count == 2
    await loop.stop()


def test_build_from_settings(monkeypatch: pytest.MonkeyPatch, static_retriever) -> None:
    monkeypatch.setattr("adaptive_rag_backend.config.load_dotenv", lambda: None)
    monkeypatch.setenv("CACHE_MAX_ENTRIES", "50")
    monkeypatch.setenv("CACHE_BOOST_TTL_SECONDS", "0")
    monkeypatch.delenv("BANDIT_ARMS_JSON", raising=False)

    loop = AdaptiveRetrievalLoop.build(load_settings(), static_retriever)

    assert loop.bandit.arms == DEFAULT_ARMS
    assert loop.cache.config.max_entries == 50
    assert loop.cache.config.boost_ttl is None
    assert loop.enabled
    assert not loop.started


@pytest.mark.asyncio
async def test_disabled_loop_survives_retriever_failure(failing_retriever, clock) -> None:
    loop = _loop(failing_retriever, clock, enabled=False)

    outcome = await loop.prepare("question", query_id="q1")

    assert outcome.sources == ()
    assert outcome.choice.arm == DEFAULT_ARMS[0]
    assert outcome.cached is None


@pytest.mark.asyncio
async def test_doc_feedback_published_through_the_loop(static_retriever, clock, make_fragments) -> None:
    loop = _loop(static_retriever, clock)
    await loop.start()
    received = []
    loop.bus.subscribe_doc_feedback(received.append, name="doc-audit")
    (fragment,) = make_fragments("c1")

    event = loop.publish_doc_feedback(fragment, Verdict.UP, FeedbackReason.HELPFUL, "q1")
    await loop.bus.join()

    assert received == [event]
    with pytest.raises(ValidationError):
        loop.publish_doc_feedback(fragment, Verdict.DOWN, "Irrelevant")
    await loop.stop()


@pytest.mark.asyncio
async def test_disabled_loop_rejects_doc_feedback(static_retriever, clock, make_fragments) -> None:
    loop = _loop(static_retriever, clock, enabled=False)

    with pytest.raises(FeedbackDisabledError):
        loop.publish_doc_feedback(make_fragments("c1")[0], Verdict.UP)
