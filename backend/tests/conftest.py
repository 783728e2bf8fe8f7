"""pytest fixtures for Adaptive RAG Backend tests."""

import os

# Set environment variables BEFORE any imports
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("BANDIT_SEED", "7")

from datetime import datetime, timedelta, timezone

import pytest

from adaptive_rag_backend.retrieval.types import RetrievalParams, SourceFragment


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class StaticRetriever:
    """Retriever returning a fixed, replaceable list of fragments."""

    def __init__(self, fragments: list[SourceFragment] | None = None) -> None:
        self.fragments = list(fragments or [])
        self.calls: list[tuple[str, RetrievalParams, int]] = []

    async def retrieve(self, query: str, params: RetrievalParams, top_k: int) -> list[SourceFragment]:
        self.calls.append((query, params, top_k))
        return self.fragments[:top_k]


class FailingRetriever:
    async def retrieve(self, query: str, params: RetrievalParams, top_k: int) -> list[SourceFragment]:
        raise RuntimeError("index unavailable")


def fragments(*ids: str) -> list[SourceFragment]:
    """Build fragments whose identity is the given source id."""
    return [SourceFragment(content=f"content of {source_id}", source_id=source_id) for source_id in ids]


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
def static_retriever() -> StaticRetriever:
    """Provide an empty static retriever."""
    return StaticRetriever()


@pytest.fixture
def failing_retriever() -> FailingRetriever:
    """Provide a retriever that always raises."""
    return FailingRetriever()


@pytest.fixture
def make_fragments():
    """Provide the fragment factory."""
    return fragments
