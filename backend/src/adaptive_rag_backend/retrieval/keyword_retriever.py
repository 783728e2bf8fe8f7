"""In-memory keyword retriever with MMR reranking.

A lightweight Retriever for local runs and tests: fragments are scored by
cosine similarity of term-frequency vectors, filtered by the arm's
``min_score``, and diversified with Maximal Marginal Relevance using the
arm's ``mmr_lambda``.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from threading import Lock
from typing import Iterable

import structlog

from .types import RetrievalParams, SourceFragment

logger = structlog.get_logger(__name__)

_TOKEN = re.compile(r"[a-z0-9]+")


def tokenize(text: str) -> Counter[str]:
    return Counter(_TOKEN.findall(text.lower()))


def cosine(a: Counter[str], b: Counter[str]) -> float:
    if not a or not b:
        return 0.0
    dot = sum(count * b[term] for term, count in a.items() if term in b)
    norm_a = math.sqrt(sum(count * count for count in a.values()))
    norm_b = math.sqrt(sum(count * count for count in b.values()))
    return dot / (norm_a * norm_b)


class KeywordRetriever:
    """Term-frequency retriever over an in-memory fragment index."""

    def __init__(self, fragments: Iterable[SourceFragment] = ()) -> None:
        self._lock = Lock()
        self._index: dict[str, tuple[SourceFragment, Counter[str]]] = {}
        for fragment in fragments:
            self.index_fragment(fragment)

    def __len__(self) -> int:
        return len(self._index)

    def index_fragment(self, fragment: SourceFragment) -> None:
        """Add or replace a fragment, keyed by its identity."""
        with self._lock:
            self._index[fragment.identity] = (fragment, tokenize(fragment.content))

    def remove_fragment(self, identity: str) -> bool:
        with self._lock:
            return self._index.pop(identity, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._index)
            self._index = {}
        return count

    async def retrieve(
        self,
        query: str,
        params: RetrievalParams,
        top_k: int,
    ) -> list[SourceFragment]:
        with self._lock:
            indexed = list(self._index.values())
        query_terms = tokenize(query)
        if not indexed or not query_terms:
            return []

        candidates = []
        for fragment, terms in indexed:
            relevance = cosine(query_terms, terms)
            if relevance > 0 and relevance >= params.min_score:
                candidates.append((fragment, terms, relevance))
        selected = _mmr(candidates, top_k, params.mmr_lambda)

        logger.debug(
            "keyword_retrieval_completed",
            candidates=len(candidates),
            returned=len(selected),
            top_k=top_k,
        )
        return [fragment for fragment, _, _ in selected]


def _mmr(
    candidates: list[tuple[SourceFragment, Counter[str], float]],
    k: int,
    mmr_lambda: float,
) -> list[tuple[SourceFragment, Counter[str], float]]:
    remaining = sorted(candidates, key=lambda item: item[2], reverse=True)
    selected: list[tuple[SourceFragment, Counter[str], float]] = []
    while remaining and len(selected) < k:
        best_index = 0
        best_score = -math.inf
        for index, (_, terms, relevance) in enumerate(remaining):
            redundancy = max((cosine(terms, chosen[1]) for chosen in selected), default=0.0)
            score = mmr_lambda * relevance - (1 - mmr_lambda) * redundancy
            if score > best_score:
                best_index, best_score = index, score
        selected.append(remaining.pop(best_index))
    return selected
