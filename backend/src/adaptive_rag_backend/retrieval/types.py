from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Protocol, Sequence


@dataclass(frozen=True)
class RetrievalParams:
    top_k: int
    mmr_lambda: float
    min_score: float

    def __post_init__(self) -> None:
        if self.top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {self.top_k}")
        if not 0.0 <= self.mmr_lambda <= 1.0:
            raise ValueError(f"mmr_lambda must be between 0 and 1, got {self.mmr_lambda}")
        if not -1.0 <= self.min_score <= 1.0:
            raise ValueError(f"min_score must be between -1 and 1, got {self.min_score}")


@dataclass(frozen=True)
class SourceFragment:
    """A retrieved piece of source text.

    Fragments are compared by ``identity``: the explicit ``source_id`` when
    the retriever supplies one, otherwise the fragment content itself.
    """

    content: str
    source_id: Optional[str] = None
    title: Optional[str] = None
    path: Optional[str] = None
    page: Optional[int] = None
    score: Optional[float] = None
    metadata: Optional[dict[str, Any]] = field(default=None, compare=False, hash=False)

    @property
    def identity(self) -> str:
        return self.source_id if self.source_id is not None else self.content


@dataclass(frozen=True)
class AnswerContext:
    """Question, answer and sources recorded for one query."""

    query_id: str
    question: str
    answer: str
    sources: tuple[SourceFragment, ...]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Retriever(Protocol):
    """Fresh retrieval over the document index.

    Must be safe to call repeatedly and concurrently. Failures (such as an
    empty index) surface as an empty result, not an exception.
    """

    async def retrieve(
        self,
        query: str,
        params: RetrievalParams,
        top_k: int,
    ) -> Sequence[SourceFragment]:
        ...


class ContextStore(Protocol):
    """Keyed store of answer contexts by query id."""

    async def get(self, query_id: str) -> Optional[AnswerContext]:
        ...


class WritableContextStore(ContextStore, Protocol):
    """Context store the orchestrator can register answers with."""

    async def put(
        self,
        query_id: str,
        question: str,
        answer: str,
        sources: Iterable[SourceFragment],
    ) -> AnswerContext:
        ...
