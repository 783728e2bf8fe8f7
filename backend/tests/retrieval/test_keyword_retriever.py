"""Tests for the in-memory keyword retriever."""

import pytest

from adaptive_rag_backend.retrieval import KeywordRetriever, RetrievalParams, SourceFragment
from adaptive_rag_backend.retrieval.keyword_retriever import cosine, tokenize

PARAMS = RetrievalParams(top_k=3, mmr_lambda=1.0, min_score=0.0)


@pytest.fixture
def retriever() -> KeywordRetriever:
    return KeywordRetriever(
        [
            SourceFragment(content="thompson sampling draws from beta posteriors", source_id="ts"),
            SourceFragment(content="maximal marginal relevance diversifies results", source_id="mmr"),
            SourceFragment(content="beta posteriors track arm success rates", source_id="beta"),
        ]
    )


def test_cosine_of_identical_texts() -> None:
    terms = tokenize("beta beta arm")
    assert cosine(terms, terms) == pytest.approx(1.0)
    assert cosine(terms, tokenize("")) == 0.0


@pytest.mark.asyncio
async def test_returns_matching_fragments_by_relevance(retriever) -> None:
    results = await retriever.retrieve("beta posteriors", PARAMS, 3)
    assert {fragment.source_id for fragment in results} == {"ts", "beta"}


@pytest.mark.asyncio
async def test_respects_top_k(retriever) -> None:
    results = await retriever.retrieve("beta posteriors", PARAMS, 1)
    assert len(results) == 1


@pytest.mark.asyncio
async def test_min_score_filters_weak_matches(retriever) -> None:
    strict = RetrievalParams(top_k=3, mmr_lambda=1.0, min_score=0.9)
    assert await retriever.retrieve("beta posteriors", strict, 3) == []


@pytest.mark.asyncio
async def test_empty_index_returns_nothing() -> None:
    assert await KeywordRetriever().retrieve("anything", PARAMS, 3) == []


@pytest.mark.asyncio
async def test_mmr_prefers_diverse_fragments() -> None:
    retriever = KeywordRetriever(
        [
            SourceFragment(content="cache ttl cache ttl", source_id="a"),
            SourceFragment(content="cache ttl cache ttl expiry", source_id="b"),
            SourceFragment(content="cache overlap jaccard", source_id="c"),
        ]
    )
    diverse = RetrievalParams(top_k=2, mmr_lambda=0.3, min_score=0.0)

    results = await retriever.retrieve("cache ttl", diverse, 2)

    assert [fragment.source_id for fragment in results] == ["a", "c"]


def test_index_and_remove(retriever) -> None:
    retriever.index_fragment(SourceFragment(content="new text", source_id="new"))
    assert len(retriever) == 4
    assert retriever.remove_fragment("new") is True
    assert retriever.remove_fragment("new") is False
    assert retriever.clear() == 3
    assert len(retriever) == 0
