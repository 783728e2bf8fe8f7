"""Core utilities for the Adaptive RAG Backend."""

from .errors import (
    AppError,
    ErrorCode,
    FeedbackDisabledError,
    QueryContextNotFoundError,
    ValidationError,
)

__all__ = [
    "AppError",
    "ErrorCode",
    "FeedbackDisabledError",
    "QueryContextNotFoundError",
    "ValidationError",
]
