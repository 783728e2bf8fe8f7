"""In-memory store of per-query answer contexts.

The store keeps what a later verdict needs to promote an answer into the
semantic cache: the question, the produced answer, and the sources used.
"""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Iterable, Optional

import structlog

from .types import AnswerContext, SourceFragment

logger = structlog.get_logger(__name__)


class InMemoryContextStore:
    """Process-local context store, optionally bounded.

    When ``max_entries`` is set, the least recently written contexts are
    evicted first.
    """

    def __init__(self, max_entries: Optional[int] = None) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1 when set")
        self._max_entries = max_entries
        self._contexts: OrderedDict[str, AnswerContext] = OrderedDict()
        self._lock = Lock()

    def __len__(self) -> int:
        return len(self._contexts)

    async def put(
        self,
        query_id: str,
        question: str,
        answer: str,
        sources: Iterable[SourceFragment],
    ) -> AnswerContext:
        """Record the context produced for a query, replacing any earlier one."""
        if not query_id:
            raise ValueError("query_id cannot be empty")
        context = AnswerContext(
            query_id=query_id,
            question=question,
            answer=answer,
            sources=tuple(sources),
        )
        await self.put_context(context)
        return context

    async def put_context(self, context: AnswerContext) -> None:
        evicted: list[str] = []
        with self._lock:
            self._contexts[context.query_id] = context
            self._contexts.move_to_end(context.query_id)
            if self._max_entries is not None:
                while len(self._contexts) > self._max_entries:
                    query_id, _ = self._contexts.popitem(last=False)
                    evicted.append(query_id)
        logger.debug(
            "answer_context_stored",
            query_id=context.query_id,
            sources=len(context.sources),
        )
        if evicted:
            logger.debug("answer_contexts_evicted", count=len(evicted))

    async def get(self, query_id: str) -> Optional[AnswerContext]:
        with self._lock:
            return self._contexts.get(query_id)

    async def remove(self, query_id: str) -> bool:
        with self._lock:
            return self._contexts.pop(query_id, None) is not None
