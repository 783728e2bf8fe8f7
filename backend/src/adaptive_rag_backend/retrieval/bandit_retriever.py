"""Retriever adapter that lets the parameter bandit pick parameters per query."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from .bandit import ArmChoice, ParamBandit
from .types import Retriever, SourceFragment

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BanditRetrieval:
    choice: ArmChoice
    sources: tuple[SourceFragment, ...]


class BanditRetriever:
    """Chooses parameters with the bandit, then retrieves with them.

    The query id ties the chosen arm to the eventual verdict on the answer.
    """

    def __init__(self, bandit: ParamBandit, retriever: Retriever) -> None:
        self._bandit = bandit
        self._retriever = retriever

    async def retrieve(self, query: str, query_id: str) -> BanditRetrieval:
        choice = self._bandit.choose_params(query, query_id=query_id)
        return await self.retrieve_with(query, query_id, choice)

    async def retrieve_with(
        self, query: str, query_id: str, choice: ArmChoice
    ) -> BanditRetrieval:
        """Retrieve with an already chosen arm; a failing retriever yields no sources."""
        params = choice.params
        try:
            sources = tuple(await self._retriever.retrieve(query, params, params.top_k))
        except Exception as e:
            logger.warning(
                "bandit_retrieval_failed",
                query_id=query_id,
                arm_id=choice.arm.id,
                error=str(e),
            )
            sources = ()
        logger.info(
            "bandit_retrieval_completed",
            query_id=query_id,
            cluster=choice.cluster,
            arm_id=choice.arm.id,
            sources=len(sources),
        )
        return BanditRetrieval(choice=choice, sources=sources)
