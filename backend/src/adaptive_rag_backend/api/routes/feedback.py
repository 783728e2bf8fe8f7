"""Verdict, document feedback and answer registration endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Path
import structlog

from ...core.errors import QueryContextNotFoundError
from ...orchestrator import AdaptiveRetrievalLoop
from ...schemas import (
    DocFeedbackRequest,
    DocFeedbackResponse,
    RegisterAnswerRequest,
    SourceFragmentModel,
    VerdictRequest,
    VerdictResponse,
)
from ...validation import QUERY_ID_PATTERN
from ..utils import get_adaptive_loop, success_response

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["feedback"])


@router.post("/feedback", status_code=202)
async def publish_verdict(
    payload: VerdictRequest,
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Publish a user verdict; consumers process it in the background."""
    event = loop.publish_verdict(payload.query_id, payload.verdict, payload.tags)
    logger.info(
        "verdict_received",
        query_id=event.query_id,
        verdict=event.verdict.value,
        tags=len(event.tags),
    )
    data = VerdictResponse(
        query_id=event.query_id,
        verdict=event.verdict.value,
        tags=list(event.tags),
        timestamp=event.timestamp,
    )
    return success_response(data.model_dump(mode="json"))


@router.post("/feedback/documents", status_code=202)
async def publish_doc_feedback(
    payload: DocFeedbackRequest,
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Publish a verdict on a single retrieved source fragment."""
    event = loop.publish_doc_feedback(
        payload.fragment.to_fragment(),
        payload.verdict,
        payload.reason,
        payload.query_id,
    )
    logger.info(
        "doc_feedback_received",
        query_id=event.query_id,
        verdict=event.verdict.value,
        reason=event.reason.value,
    )
    data = DocFeedbackResponse(
        query_id=event.query_id,
        verdict=event.verdict.value,
        reason=event.reason.value,
        source=event.fragment.identity,
        timestamp=event.timestamp,
    )
    return success_response(data.model_dump(mode="json"))


@router.post("/answers", status_code=201)
async def register_answer(
    payload: RegisterAnswerRequest,
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Record the question, answer and sources produced for a query."""
    context = await loop.register_answer(
        payload.query_id,
        payload.question,
        payload.answer,
        [source.to_fragment() for source in payload.sources],
    )
    return success_response(
        {
            "query_id": context.query_id,
            "sources": len(context.sources),
            "created_at": context.created_at.isoformat().replace("+00:00", "Z"),
        }
    )


@router.get("/answers/{query_id}")
async def get_answer(
    query_id: str = Path(..., min_length=1, max_length=255, pattern=QUERY_ID_PATTERN),
    loop: AdaptiveRetrievalLoop = Depends(get_adaptive_loop),
) -> dict[str, Any]:
    """Return the answer context registered for a query."""
    context = await loop.context_store.get(query_id)
    if context is None:
        raise QueryContextNotFoundError(query_id)
    return success_response(
        {
            "query_id": context.query_id,
            "question": context.question,
            "answer": context.answer,
            "sources": [
                SourceFragmentModel.from_fragment(source).model_dump()
                for source in context.sources
            ],
            "created_at": context.created_at.isoformat().replace("+00:00", "Z"),
        }
    )
