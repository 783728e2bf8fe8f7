"""Retrieval parameter selection and cache-aware preparation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request

from ...orchestrator import AdaptiveRetrievalLoop
from ...retrieval.bandit import ArmChoice
from ...retrieval.keyword_retriever import KeywordRetriever
from ...schemas import (
    ArmChoiceResponse,
    CachedAnswerModel,
    IndexFragmentsRequest,
    PrepareResponse,
    QueryParamsRequest,
    RetrievalParamsModel,
    SourceFragmentModel,
)
from ..utils import get_adaptive_loop, success_response

router = APIRouter(tags=["retrieval"])


def _params_model(choice: ArmChoice) -> RetrievalParamsModel:
    return RetrievalParamsModel(
        top_k=choice.params.top_k,
        mmr_lambda=choice.params.mmr_lambda,
        min_score=choice.params.min_score,
    )


async def get_keyword_retriever(request: Request) -> KeywordRetriever:
    retriever = getattr(request.app.state, "keyword_retriever", None)
    if retriever is None:
        raise HTTPException(
            status_code=409,
            detail="Fragment indexing is only available with the built-in retriever",
        )
    return retriever


@router.post("/retrieval/params")
async def choose_params(
    payload: QueryParamsRequest,
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Select retrieval parameters for a query by Thompson Sampling."""
    choice = loop.bandit.choose_params(payload.query, query_id=payload.query_id)
    data = ArmChoiceResponse(
        query_id=payload.query_id,
        cluster=choice.cluster,
        arm_id=choice.arm.id,
        params=_params_model(choice),
    )
    return success_response(data.model_dump())


@router.post("/retrieval/prepare")
async def prepare_query(
    payload: QueryParamsRequest,
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Retrieve sources for a query and serve a corroborated cached answer if any."""
    outcome = await loop.prepare(payload.query, payload.query_id)
    cached = None
    if outcome.cached is not None:
        cached = CachedAnswerModel(
            entry_id=outcome.cached.entry_id,
            answer=outcome.cached.answer,
            similarity=outcome.cached.similarity,
            sources=[SourceFragmentModel.from_fragment(s) for s in outcome.cached.sources],
        )
    data = PrepareResponse(
        query_id=outcome.query_id,
        cluster=outcome.choice.cluster,
        arm_id=outcome.choice.arm.id,
        params=_params_model(outcome.choice),
        sources=[SourceFragmentModel.from_fragment(s) for s in outcome.sources],
        cached=cached,
    )
    return success_response(data.model_dump())


@router.post("/fragments", status_code=201)
async def index_fragments(
    payload: IndexFragmentsRequest,
    retriever: KeywordRetriever = Depends(get_keyword_retriever),
) -> dict[str, Any]:
    """Index fragments into the built-in keyword retriever."""
    for fragment in payload.fragments:
        retriever.index_fragment(fragment.to_fragment())
    return success_response({"indexed": len(payload.fragments), "total": len(retriever)})
