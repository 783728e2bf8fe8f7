"""Shared helpers for API routes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import HTTPException, Request

from ..orchestrator import AdaptiveRetrievalLoop


def build_meta() -> dict[str, Any]:
    """Build standard response metadata."""
    return {
        "requestId": str(uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    }


def success_response(data: Any) -> dict[str, Any]:
    """Wrap a payload in the standard data/meta envelope."""
    return {"data": data, "meta": build_meta()}


async def get_adaptive_loop(request: Request) -> AdaptiveRetrievalLoop:
    """Provide the adaptive retrieval loop from application state."""
    loop = getattr(request.app.state, "adaptive_loop", None)
    if loop is None:
        raise HTTPException(status_code=503, detail="Adaptive retrieval loop unavailable")
    return loop
