"""Tests for the in-memory answer context store."""

import pytest

from adaptive_rag_backend.retrieval import InMemoryContextStore, SourceFragment


@pytest.mark.asyncio
async def test_put_and_get_roundtrip() -> None:
    store = InMemoryContextStore()
    sources = [SourceFragment(content="text", source_id="doc-1")]

    context = await store.put("q-1", "question", "answer", sources)

    assert await store.get("q-1") == context
    assert context.sources == tuple(sources)
    assert len(store) == 1


@pytest.mark.asyncio
async def test_put_replaces_previous_context() -> None:
    store = InMemoryContextStore()
    await store.put("q-1", "question", "first", [])
    await store.put("q-1", "question", "second", [])

    context = await store.get("q-1")
    assert context.answer == "second"
    assert len(store) == 1


@pytest.mark.asyncio
async def test_missing_context_returns_none() -> None:
    assert await InMemoryContextStore().get("missing") is None


@pytest.mark.asyncio
async def test_bounded_store_evicts_oldest() -> None:
    store = InMemoryContextStore(max_entries=2)
    for query_id in ("q-1", "q-2", "q-3"):
        await store.put(query_id, "question", "answer", [])

    assert await store.get("q-1") is None
    assert await store.get("q-3") is not None
    assert len(store) == 2


@pytest.mark.asyncio
async def test_remove() -> None:
    store = InMemoryContextStore()
    await store.put("q-1", "question", "answer", [])

    assert await store.remove("q-1") is True
    assert await store.remove("q-1") is False


@pytest.mark.asyncio
async def test_empty_query_id_rejected() -> None:
    with pytest.raises(ValueError):
        await InMemoryContextStore().put("", "question", "answer", [])


def test_invalid_bound_rejected() -> None:
    with pytest.raises(ValueError):
        InMemoryContextStore(max_entries=0)
