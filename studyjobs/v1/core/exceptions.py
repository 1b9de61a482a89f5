import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from studyjobs.config.logging import get_logger

logger = get_logger(__name__)


class StudyJobsException(Exception):
    """Base exception for the Study Jobs application."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers
        super().__init__(self.message)


class NonRetryableJobError(StudyJobsException):
    """Raised inside a handler when retrying the job cannot succeed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class ValidationError(StudyJobsException):
    """Raised when input validation fails."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class UnknownJobType(NonRetryableJobError):
    """Raised for job types outside the closed set or without a handler."""

    def __init__(self, job_type: Any):
        super().__init__(
            f"Unknown job type: {job_type}", details={"type": str(job_type)}
        )


class NotFoundError(StudyJobsException):
    """Raised when a resource is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class JobNotFound(NotFoundError):
    def __init__(self, job_id: Any):
        super().__init__("Job not found", details={"job_id": str(job_id)})


class GoalNotFound(NotFoundError):
    def __init__(self, goal_id: Any):
        super().__init__(
            "Goal not found or unauthorized", details={"goal_id": str(goal_id)}
        )


class NodeNotFound(NotFoundError):
    def __init__(self, node_id: Any):
        super().__init__("Node not found", details={"node_id": str(node_id)})


class MessageNotFound(NotFoundError):
    def __init__(self, message_id: Any):
        super().__init__(
            "Message not found or unauthorized",
            details={"message_id": str(message_id)},
        )


class CardNotFound(NotFoundError):
    def __init__(self, card_id: Any):
        super().__init__(
            "Card not found or unauthorized", details={"card_id": str(card_id)}
        )


class HierarchyAlreadyExists(NonRetryableJobError):
    def __init__(self, goal_id: Any):
        super().__init__(
            "Hierarchy already exists for goal", details={"goal_id": str(goal_id)}
        )


class InvalidTransition(StudyJobsException):
    """Raised when a job status change is not allowed by the state machine."""

    def __init__(self, job_id: Any, current: str, requested: str, reason: str = ""):
        message = f"Invalid job transition {current} -> {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            status.HTTP_409_CONFLICT,
            details={"job_id": str(job_id), "current": current, "requested": requested},
        )


class RateLimitExceeded(StudyJobsException):
    """Raised at creation time when the user exhausted the window for a job type."""

    def __init__(
        self,
        job_type: str,
        remaining: int,
        reset_at: datetime,
        now: datetime | None = None,
    ):
        self.job_type = job_type
        self.remaining = remaining
        self.reset_at = reset_at
        now = now or datetime.now(UTC)
        retry_after = max(0, int((reset_at - now).total_seconds() + 0.999))
        super().__init__(
            "Rate limit exceeded. Try again later.",
            status.HTTP_429_TOO_MANY_REQUESTS,
            details={
                "type": job_type,
                "remaining": remaining,
                "reset_at": reset_at.isoformat(),
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )


class TransientHandlerFailure(StudyJobsException):
    """Raised by handlers for failures worth another attempt."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def study_jobs_exception_handler(
    request: Request, exc: StudyJobsException
) -> JSONResponse:
    """Handle application specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        # Generate correlation ID for request tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Add to log context
        from studyjobs.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        # Add request ID to response headers
        response.headers["X-Request-ID"] = request_id

        return response
