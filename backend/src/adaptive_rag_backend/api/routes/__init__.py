"""API routers."""

from .feedback import router as feedback_router
from .retrieval import router as retrieval_router
from .state import router as state_router

__all__ = ["feedback_router", "retrieval_router", "state_router"]
