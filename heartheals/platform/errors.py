"""
API error types and the middleware that renders them.

Every error leaves the API in one shape:

    {"error": {"code": "...", "message": "...", "details": {...}}}

with an X-Correlation-ID header. Stack traces stay in the server log.

Status codes used by the billing API:
- 400: bad webhook signature or payload
- 401: no account identity
- 402: feature needs premium or the free-tier limit is used up
- 404: unknown feature
- 429: webhook sender over its rate limit
- 500: unexpected failure
- 503: entitlements or a collaborator unavailable
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class AppError(Exception):
    """Base for errors that map onto an HTTP response.

    Subclasses set ``code``, ``status_code`` and ``default_message``.
    """

    code = "INTERNAL_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        self.headers = headers or {}

    def to_dict(self) -> dict:
        return {"error": {"code": self.code, "message": self.message, "details": self.details}}


class WebhookSignatureError(AppError):
    # the verifier's specific failure is only logged
    code = "INVALID_SIGNATURE"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid webhook signature"


class MalformedPayloadError(AppError):
    code = "MALFORMED_PAYLOAD"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid webhook payload"


class AuthenticationError(AppError):
    code = "AUTHENTICATION_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class PaymentRequiredError(AppError):
    code = "PAYMENT_REQUIRED"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "This feature requires a premium subscription"


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Optional[str] = None):
        if identifier:
            super().__init__(f"{resource} with id '{identifier}' not found")
        else:
            super().__init__(f"{resource} not found")


class RateLimitError(AppError):
    """Sender exceeded its webhook budget; carries Retry-After and X-RateLimit-* headers."""

    code = "RATE_LIMIT_EXCEEDED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests, please try again later."

    def __init__(
        self,
        message: Optional[str] = None,
        retry_after: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        details: Dict[str, Any] = {}
        headers: Dict[str, str] = {}
        if retry_after:
            details["retry_after_seconds"] = retry_after
            headers["Retry-After"] = str(retry_after)
        if limit is not None:
            headers["X-RateLimit-Limit"] = str(limit)
            headers["X-RateLimit-Remaining"] = "0"
        super().__init__(message, details=details, headers=headers)


class ServiceUnavailableError(AppError):
    code = "SERVICE_UNAVAILABLE"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id(request: Request) -> str:
    """Incoming X-Correlation-ID, else one already set on the request, else a new id."""
    incoming = request.headers.get(CORRELATION_HEADER)
    if incoming:
        return incoming
    return getattr(request.state, "correlation_id", None) or generate_correlation_id()


def _error_response(
    status_code: int,
    body: dict,
    correlation_id: str,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={**(headers or {}), CORRELATION_HEADER: correlation_id},
    )


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Turns exceptions escaping a route into the standard error body."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = get_correlation_id(request)
        request.state.correlation_id = correlation_id
        log_context = {
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
        }

        try:
            response = await call_next(request)
        except AppError as e:
            logger.warning(
                "Application error",
                extra={**log_context, "error_code": e.code, "status_code": e.status_code},
            )
            return _error_response(e.status_code, e.to_dict(), correlation_id, e.headers)
        except HTTPException as e:
            logger.warning(
                "HTTP exception",
                extra={**log_context, "status_code": e.status_code, "detail": e.detail},
            )
            body = {"error": {"code": "HTTP_ERROR", "message": str(e.detail), "details": {}}}
            return _error_response(e.status_code, body, correlation_id)
        except Exception as e:
            logger.exception("Unhandled exception", extra={**log_context, "error_type": type(e).__name__})
            body = AppError(details={"correlation_id": correlation_id}).to_dict()
            return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, body, correlation_id)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
