"""Error handling with RFC 7807 Problem Details support."""

from enum import Enum
from typing import Any, Optional

from fastapi import Request
from fastapi.responses import JSONResponse


class ErrorCode(str, Enum):
    """Standardized error codes for the application."""

    VALIDATION_ERROR = "validation_error"
    QUERY_CONTEXT_NOT_FOUND = "query_context_not_found"
    FEEDBACK_DISABLED = "feedback_disabled"
    INTERNAL_ERROR = "internal_error"


class AppError(Exception):
    """
    Structured application error following RFC 7807 Problem Details.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        status: HTTP status code
        details: Additional error context
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status: int = 500,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}
        super().__init__(message)

    def to_problem_detail(self, instance: str) -> dict[str, Any]:
        """
        Convert error to RFC 7807 Problem Details format.

        Args:
            instance: The request path where the error occurred

        Returns:
            Dictionary in RFC 7807 format
        """
        problem = {
            "type": f"https://api.example.com/errors/{self.code.value.replace('_', '-')}",
            "title": self.code.value.replace("_", " ").title(),
            "status": self.status,
            "detail": self.message,
            "instance": instance,
        }
        if self.details:
            problem["errors"] = self.details
        return problem


class ValidationError(AppError):
    """Validation error for request data."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            status=400,
            details=details,
        )


class QueryContextNotFoundError(AppError):
    """Error when no answer context was registered for a query."""

    def __init__(self, query_id: str) -> None:
        super().__init__(
            code=ErrorCode.QUERY_CONTEXT_NOT_FOUND,
            message=f"No answer context registered for query '{query_id}'",
            status=404,
            details={"query_id": query_id},
        )


class FeedbackDisabledError(AppError):
    """Error when the feedback loop is switched off for this process."""

    def __init__(self) -> None:
        super().__init__(
            code=ErrorCode.FEEDBACK_DISABLED,
            message="Feedback loop is disabled",
            status=503,
        )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    FastAPI exception handler for AppError.

    Converts AppError to RFC 7807 Problem Details JSON response.

    Args:
        request: The FastAPI request object
        exc: The AppError exception

    Returns:
        JSONResponse with Problem Details format
    """
    return JSONResponse(
        status_code=exc.status,
        content=exc.to_problem_detail(str(request.url.path)),
    )
